"""
Unit tests for mission plan file loading.
"""

import unittest
import tempfile
import shutil
import json
from pathlib import Path

from mission_uplink.errors import ValidationError
from mission_uplink.mission_file import load_mission, load_qgc_wpl


QGC_PLAN = (
    "QGC WPL 110\n"
    "0\t1\t0\t16\t0\t0\t0\t0\t47.397742\t8.545594\t488.0\t1\n"
    "1\t0\t3\t22\t15\t0\t0\t0\t47.398\t8.546\t20.0\t1\n"
    "2\t0\t3\t16\t0\t2\t0\t0\t47.399\t8.547\t30.0\t1\n"
)


class TestLoadMission(unittest.TestCase):
    """Test cases for plan file loaders."""

    def setUp(self):
        """Set up test fixtures."""
        self.test_dir = tempfile.mkdtemp()

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.test_dir)

    def write(self, name, content):
        path = Path(self.test_dir) / name
        path.write_text(content, encoding='utf-8')
        return path

    def test_json_list(self):
        """Test a JSON array of waypoints."""
        waypoints = [{'lat': 47.1, 'lon': 8.1, 'alt': 10}, {'lat': 47.2, 'lon': 8.2}]
        path = self.write('plan.json', json.dumps(waypoints))

        self.assertEqual(load_mission(path), waypoints)

    def test_json_object(self):
        """Test a JSON object with a waypoints key."""
        path = self.write('plan.json', json.dumps({'waypoints': [{'x': 1, 'y': 2}]}))

        self.assertEqual(load_mission(str(path)), [{'x': 1, 'y': 2}])

    def test_json_invalid(self):
        """Test broken JSON and wrong shapes are rejected."""
        with self.assertRaises(ValidationError):
            load_mission(self.write('broken.json', '[{"lat": 1'))
        with self.assertRaises(ValidationError):
            load_mission(self.write('shape.json', '{"items": []}'))

    def test_csv(self):
        """Test CSV columns map onto waypoint fields."""
        path = self.write('plan.csv', (
            "Lat,Lon,Alt,command,note\n"
            "47.1,8.1,10,16,start\n"
            "47.2,8.2,,22,\n"
        ))

        waypoints = load_mission(path)

        self.assertEqual(len(waypoints), 2)
        self.assertEqual(waypoints[0], {'lat': 47.1, 'lon': 8.1, 'alt': 10.0, 'command': 16})
        self.assertNotIn('alt', waypoints[1])
        self.assertEqual(waypoints[1]['command'], 22)

    def test_csv_missing_coordinates(self):
        """Test CSV without latitude/longitude columns is rejected."""
        path = self.write('plan.csv', "alt,command\n10,16\n")

        with self.assertRaises(ValidationError):
            load_mission(path)

    def test_qgc_wpl_skips_home(self):
        """Test row 0 of a QGC WPL file is treated as home."""
        path = self.write('survey.waypoints', QGC_PLAN)

        waypoints = load_mission(path)

        self.assertEqual(len(waypoints), 2)
        self.assertEqual(waypoints[0]['command'], 22)
        self.assertEqual(waypoints[0]['frame'], 3)
        self.assertEqual(waypoints[0]['param1'], 15)
        self.assertAlmostEqual(waypoints[0]['x'], 47.398)
        self.assertAlmostEqual(waypoints[0]['y'], 8.546)
        self.assertAlmostEqual(waypoints[0]['z'], 20.0)
        self.assertEqual(waypoints[1]['param2'], 2)
        self.assertNotIn('seq', waypoints[0])
        self.assertNotIn('current', waypoints[0])

    def test_qgc_wpl_include_home(self):
        """Test row 0 is kept on request."""
        path = self.write('survey.txt', QGC_PLAN)

        waypoints = load_qgc_wpl(path, include_home=True)

        self.assertEqual(len(waypoints), 3)
        self.assertEqual(waypoints[0]['frame'], 0)
        self.assertAlmostEqual(waypoints[0]['z'], 488.0)

    def test_qgc_wpl_bad_header(self):
        """Test a file without the WPL header is rejected."""
        path = self.write('plan.waypoints', "0\t1\t0\t16\t0\t0\t0\t0\t1\t2\t3\t1\n")

        with self.assertRaises(ValidationError):
            load_mission(path)

    def test_qgc_wpl_header_only(self):
        """Test an empty WPL plan loads as no waypoints."""
        path = self.write('empty.waypoints', "QGC WPL 110\n")

        self.assertEqual(load_mission(path), [])

    def test_unsupported_suffix(self):
        """Test unknown formats are rejected."""
        with self.assertRaises(ValidationError):
            load_mission(self.write('plan.kml', '<kml/>'))

    def test_missing_file(self):
        """Test a missing file is rejected."""
        with self.assertRaises(ValidationError):
            load_mission(Path(self.test_dir) / 'nope.json')


if __name__ == '__main__':
    unittest.main()

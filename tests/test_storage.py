import os
import tempfile
import unittest

from aerofresh.storage import Storage, make_model_key, normalize_tail

NOW = 1_750_000_000.0


class TestStorage(unittest.TestCase):
    def setUp(self):
        fd, path = tempfile.mkstemp(suffix=".db")
        os.close(fd)
        self.db_path = path
        self.s = Storage(db_path=path)
        self.s.upsert_aircraft({"tail": "n172ef", "make": "Cessna", "model": "172", "type_code": "C172", "year": 1990, "seats": 4})
        self.s.upsert_aircraft({"tail": "N737AB", "make": "Boeing", "model": "737-800", "typeCode": "B738", "year": 2018, "seats": 189})

    def tearDown(self):
        self.s.close()
        try:
            os.remove(self.db_path)
        except OSError:
            pass

    def test_helpers(self):
        self.assertEqual(normalize_tail(" n12ab "), "N12AB")
        self.assertEqual(make_model_key("Cessna", "172"), "cessna-172")
        self.assertEqual(make_model_key(None, "A320"), "-a320")

    def test_aircraft_upsert_and_lookup(self):
        ac = self.s.get_aircraft("N172EF")
        self.assertEqual(ac["tail"], "N172EF")
        self.assertEqual(ac["typeCode"], "C172")
        self.assertEqual(self.s.get_aircraft("n737ab")["typeCode"], "B738")

        self.s.upsert_aircraft({"tail": "N172EF", "make": "Cessna", "model": "172", "year": 1991})
        self.assertEqual(self.s.get_aircraft("N172EF")["year"], 1991)
        self.assertEqual(self.s.counts()["aircraft"], 2)
        self.assertIsNone(self.s.get_aircraft("N000"))

    def test_search(self):
        self.assertEqual([a["tail"] for a in self.s.search_aircraft(q="boe")], ["N737AB"])
        self.assertEqual([a["tail"] for a in self.s.search_aircraft(q="n")], ["N172EF", "N737AB"])
        self.assertEqual([a["tail"] for a in self.s.search_aircraft(make="cessna")], ["N172EF"])
        self.assertEqual([a["tail"] for a in self.s.search_aircraft(year=2018)], ["N737AB"])
        self.assertEqual(self.s.search_aircraft(q="boeing", year=1990), [])
        self.assertEqual(len(self.s.search_aircraft(q="n", limit=1)), 1)

    def test_owners_newest_first(self):
        self.s.upsert_owner("o1", "First Owner", "Individual", "CA", "USA")
        self.s.upsert_owner("o2", "Flight School", "Flight School", "TX", "USA")
        self.s.link_owner("N172EF", "o1", "1995-01-01", "2005-03-01")
        self.s.link_owner("N172EF", "o2", "2005-03-10")
        # relinking the same period only updates the end date
        self.s.link_owner("N172EF", "o2", "2005-03-10", "2024-01-01")

        owners = self.s.get_owners("n172ef")
        self.assertEqual(len(owners), 2)
        self.assertEqual(owners[0]["owner"]["name"], "Flight School")
        self.assertEqual(owners[0]["startDate"], "2005-03-10")
        self.assertEqual(owners[0]["endDate"], "2024-01-01")
        self.assertEqual(owners[1]["endDate"], "2005-03-01")
        self.assertEqual(self.s.get_owners("N737AB"), [])

    def test_accidents(self):
        first = self.s.add_accident("N172EF", "2010-05-01", "MINOR", fatalities=0)
        second = self.s.add_accident("n172ef", "2015-08-22", "FATAL", "LANDING", 34.2, -118.5, "Stall on final", 1, 2)
        self.assertNotEqual(first, second)
        accidents = self.s.get_accidents("N172EF")
        self.assertEqual([a["date"] for a in accidents], ["2015-08-22", "2010-05-01"])
        self.assertEqual(accidents[0]["fatalities"], 2)
        self.assertEqual(self.s.counts()["accidents"], 2)

    def test_directives_by_key_and_status(self):
        self.s.upsert_directive("AD 1", "Cessna-172", "Fuel lines", "2020-12-10", "open", "MEDIUM")
        self.s.upsert_directive("AD 2", "cessna-172", "Seat rails", "2011-01-01", "CLOSED")
        self.s.upsert_directive("AD 3", "boeing-737-800", "Slat tracks", "2019-06-01")

        all_cessna = self.s.get_directives("CESSNA-172")
        self.assertEqual([d["ref"] for d in all_cessna], ["AD 1", "AD 2"])
        self.assertEqual(all_cessna[0]["status"], "OPEN")
        self.assertEqual(all_cessna[0]["effectiveDate"], "2020-12-10")
        self.assertEqual([d["ref"] for d in self.s.get_directives("cessna-172", status="open")], ["AD 1"])

        self.s.upsert_directive("AD 1", "cessna-172", "Fuel lines", "2020-12-10", "CLOSED")
        self.assertEqual(self.s.get_directives("cessna-172", status="OPEN"), [])
        self.assertEqual(self.s.counts()["adDirectives"], 3)

    def test_live_position_insert_then_update(self):
        self.assertTrue(self.s.upsert_live_position("N172EF", NOW, 34.0, -118.0, alt=3000, src="demo"))
        self.assertFalse(self.s.upsert_live_position("N172EF", NOW, 34.5, -118.5, alt=3500, src="demo"))
        latest = self.s.latest_position("n172ef")
        self.assertEqual(latest["lat"], 34.5)
        self.assertEqual(latest["alt"], 3500)
        self.assertEqual(latest["aircraft"], {"make": "Cessna", "model": "172"})
        self.assertTrue(latest["ts"].endswith("+00:00"))

    def test_unknown_aircraft_positions(self):
        self.s.upsert_live_position("N999ZZ", NOW, 10.0, 10.0)
        self.assertEqual(self.s.latest_position("N999ZZ")["aircraft"], {"make": "Unknown", "model": "Unknown"})
        self.assertIsNone(self.s.latest_position("N737AB"))

    def test_recent_positions_and_region(self):
        self.s.upsert_live_position("N172EF", NOW - 60, 34.0, -118.0)
        self.s.upsert_live_position("N737AB", NOW - 120, 40.0, -74.0)
        self.s.upsert_live_position("N737AB", NOW - 3600, 41.0, -75.0)

        recent = self.s.recent_positions(minutes=30, now=NOW)
        self.assertEqual([p["tail"] for p in recent], ["N172EF", "N737AB"])
        self.assertEqual(len(self.s.recent_positions(minutes=30, limit=1, now=NOW)), 1)
        self.assertEqual(len(self.s.recent_positions(minutes=120, now=NOW)), 3)

        west = self.s.positions_in_region(30.0, 36.0, -120.0, -110.0, now=NOW)
        self.assertEqual([p["tail"] for p in west], ["N172EF"])
        self.assertEqual(self.s.positions_in_region(40.5, 42.0, -76.0, -74.0, now=NOW), [])

    def test_track_oldest_first(self):
        for i, lat in enumerate([34.0, 34.1, 34.2]):
            self.s.upsert_live_position("N172EF", NOW - 600 * (3 - i), lat, -118.0)
        self.s.upsert_live_position("N172EF", NOW - 2 * 86400, 33.0, -118.0)

        track = self.s.track("N172EF", hours=24, now=NOW)
        self.assertEqual([p["lat"] for p in track], [34.0, 34.1, 34.2])
        self.assertEqual(len(self.s.track("N172EF", hours=72, now=NOW)), 4)

    def test_ping(self):
        self.assertTrue(self.s.ping())


if __name__ == "__main__":
    unittest.main()

import unittest

from aerofresh.risk import compute_risk_score, open_directives


def accidents(total, fatal=0):
    out = [{"fatalities": 1} for _ in range(fatal)]
    out += [{"fatalities": 0} for _ in range(total - fatal)]
    return out


class TestRiskScore(unittest.TestCase):
    def test_no_year_no_history_is_base_score(self):
        self.assertEqual(compute_risk_score(None, [], [], current_year=2025), 25)
        self.assertEqual(compute_risk_score(None, None, None, current_year=2025), 25)

    def test_old_aircraft_with_fatal_accident_is_clamped(self):
        # 25 + 20 + 2*15 + 25 + 3*5 = 115 -> 100
        ads = [{"status": "OPEN"}] * 3
        self.assertEqual(compute_risk_score(1990, accidents(2, fatal=1), ads, current_year=2025), 100)

    def test_age_bands(self):
        cases = [(2025, 0), (2015, 0), (2014, 5), (2005, 5), (2004, 10), (1995, 10), (1994, 20)]
        for year, points in cases:
            with self.subTest(year=year):
                self.assertEqual(compute_risk_score(year, current_year=2025), 25 + points)

    def test_fatal_accidents_add_on_top_of_accident_weight(self):
        self.assertEqual(compute_risk_score(None, accidents(1), current_year=2025), 40)
        self.assertEqual(compute_risk_score(None, accidents(1, fatal=1), current_year=2025), 65)

    def test_missing_fatality_count_is_non_fatal(self):
        self.assertEqual(compute_risk_score(None, [{}, {"fatalities": None}], current_year=2025), 55)

    def test_every_supplied_directive_counts(self):
        ads = [{"status": "OPEN"}, {"status": "CLOSED"}]
        self.assertEqual(compute_risk_score(None, [], ads, current_year=2025), 35)

    def test_score_is_bounded(self):
        for year in (None, 1900, 2025, 2030):
            for n in range(0, 8):
                for fatal in range(0, n + 1):
                    score = compute_risk_score(year, accidents(n, fatal), [{"status": "OPEN"}] * n, current_year=2025)
                    self.assertGreaterEqual(score, 0)
                    self.assertLessEqual(score, 100)

    def test_monotonic_in_accidents(self):
        previous = -1
        for n in range(0, 10):
            score = compute_risk_score(2010, accidents(n), [], current_year=2025)
            self.assertGreaterEqual(score, previous)
            previous = score

    def test_monotonic_in_fatal_accidents(self):
        previous = -1
        for fatal in range(0, 5):
            score = compute_risk_score(None, accidents(4, fatal), [], current_year=2025)
            self.assertGreaterEqual(score, previous)
            previous = score

    def test_deterministic(self):
        args = (1999, accidents(2, 1), [{"status": "OPEN"}])
        first = compute_risk_score(*args, current_year=2025)
        for _ in range(5):
            self.assertEqual(compute_risk_score(*args, current_year=2025), first)

    def test_defaults_to_current_year(self):
        # A brand-new aircraft adds no age points regardless of the clock
        from datetime import datetime, timezone
        this_year = datetime.now(timezone.utc).year
        self.assertEqual(compute_risk_score(this_year), 25)

    def test_open_directives_filter(self):
        ads = [{"ref": "a", "status": "OPEN"}, {"ref": "b", "status": "closed"}, {"ref": "c", "status": "open"}, {"ref": "d"}]
        self.assertEqual([d["ref"] for d in open_directives(ads)], ["a", "c"])
        self.assertEqual(open_directives(None), [])


if __name__ == "__main__":
    unittest.main()

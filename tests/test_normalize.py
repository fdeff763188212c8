import unittest
from datetime import date

from pydantic import ValidationError

from job_crawler.models import SalaryRange, WorkType
from job_crawler.normalize import (
    canonical_work_type,
    company_id,
    job_id,
    parse_date,
    parse_experience,
    parse_salary,
    unique_items,
)

TODAY = date(2026, 10, 19)


class TestParseSalary(unittest.TestCase):
    def test_korean_range_in_man_won(self):
        s = parse_salary("4,000~6,000만원")
        self.assertEqual((s.min, s.max, s.currency), (40_000_000, 60_000_000, "KRW"))

    def test_dollar_k_range(self):
        s = parse_salary("$120k - $150k")
        self.assertEqual((s.min, s.max, s.currency), (120_000, 150_000, "USD"))

    def test_reversed_range_is_ordered(self):
        s = parse_salary("$150,000 - $120,000")
        self.assertEqual((s.min, s.max), (120_000, 150_000))

    def test_lower_and_upper_bounds(self):
        s = parse_salary("3,000만원 이상")
        self.assertEqual((s.min, s.max), (30_000_000, None))
        s = parse_salary("Up to $150,000")
        self.assertEqual((s.min, s.max), (None, 150_000))

    def test_monthly_is_annualized(self):
        s = parse_salary("월 300만원")
        self.assertEqual((s.min, s.max), (36_000_000, 36_000_000))

    def test_eok_and_cheonman(self):
        self.assertEqual(parse_salary("1억").min, 100_000_000)
        self.assertEqual(parse_salary("3.5천만원").min, 35_000_000)

    def test_no_salary(self):
        for text in ("면접 후 결정", "회사내규에 따름", "Competitive", "$25/hour", "", None):
            self.assertIsNone(parse_salary(text), text)

    def test_site_currency_used_when_text_has_none(self):
        self.assertEqual(parse_salary("50,000 - 60,000", currency="EUR").currency, "EUR")

    def test_min_max_invariant_enforced(self):
        with self.assertRaises(ValidationError):
            SalaryRange(min=10, max=5)


class TestParseExperience(unittest.TestCase):
    def test_cases(self):
        cases = {
            "경력 3~5년": (3, 5),
            "1-3 years": (1, 3),
            "신입": (0, 0),
            "Entry level": (0, 0),
            "신입·경력": (0, None),
            "경력무관": (0, None),
            "5+ years": (5, None),
            "경력 3년 이상": (3, None),
        }
        for text, expected in cases.items():
            exp = parse_experience(text)
            self.assertEqual((exp.min, exp.max), expected, text)

    def test_absent(self):
        self.assertIsNone(parse_experience("대졸"))
        self.assertIsNone(parse_experience(None))


class TestParseDate(unittest.TestCase):
    def test_cases(self):
        cases = {
            "2026-11-30": "2026-11-30",
            "2026.11.30": "2026-11-30",
            "~ 11/15(금)": "2026-11-15",
            "~01/15": "2027-01-15",
            "D-7": "2026-10-26",
            "오늘마감": "2026-10-19",
            "내일마감": "2026-10-20",
            "Dec 5, 2026": "2026-12-05",
        }
        for text, expected in cases.items():
            self.assertEqual(parse_date(text, TODAY), expected, text)

    def test_always_open_is_absent(self):
        for text in ("상시채용", "채용시 마감", "Rolling", "Open until filled"):
            self.assertIsNone(parse_date(text, TODAY), text)

    def test_garbage_is_absent(self):
        self.assertIsNone(parse_date("2026-13-45", TODAY))

    def test_relative_dates_count_back_from_today(self):
        cases = {
            "Posted 3 days ago": "2026-10-16",
            "30+ days ago": "2026-09-19",
            "2 weeks ago": "2026-10-05",
            "3일 전": "2026-10-16",
            "2주 전 등록": "2026-10-05",
            "5 hours ago": "2026-10-19",
            "30분 전": "2026-10-19",
            "어제": "2026-10-18",
            "11월 30일 마감": "2026-11-30",
        }
        for text, expected in cases.items():
            self.assertEqual(parse_date(text, TODAY), expected, text)

    def test_bare_number_is_not_a_date(self):
        for text in ("3", "Posted 3", "12 applicants", "Opening 2 of 5"):
            self.assertIsNone(parse_date(text, TODAY), text)


class TestWorkType(unittest.TestCase):
    def test_canonicalization_table(self):
        cases = {
            "재택근무": WorkType.remote,
            "Remote (US)": WorkType.remote,
            "Work from home": WorkType.remote,
            "파견직": WorkType.dispatch,
            "On-site": WorkType.onsite,
            "상주 근무": WorkType.onsite,
        }
        for text, expected in cases.items():
            self.assertEqual(canonical_work_type(text), expected, text)

    def test_unrecognized_text_is_absent(self):
        for text in ("정규직", "Full-time", "Hybrid-ish", "", None):
            self.assertIsNone(canonical_work_type(text), text)

    def test_first_recognized_text_wins(self):
        self.assertEqual(canonical_work_type(None, "정규직", "Remote"), WorkType.remote)


class TestIdentity(unittest.TestCase):
    def test_job_id_uses_detail_pattern(self):
        a = job_id("examplejobs", "https://www.jobs.example.com/jobs/view/1001?utm_source=list", "/jobs/view/{id}")
        b = job_id("examplejobs", "https://jobs.example.com/jobs/view/1001/", "/jobs/view/{id}")
        self.assertEqual(a, "examplejobs-1001")
        self.assertEqual(a, b)

    def test_job_id_query_pattern(self):
        url = "https://www.saramin.co.kr/zf_user/jobs/relay/view?view_type=list&rec_idx=48123456"
        self.assertEqual(job_id("saramin", url, "rec_idx={id}"), "saramin-48123456")

    def test_job_id_without_pattern_hashes_the_url(self):
        hashed = job_id("Example Jobs", "https://x.example.com/posting/778899")
        self.assertRegex(hashed, r"^example-jobs-[0-9a-f]{12}$")
        self.assertNotEqual(hashed, job_id("Example Jobs", "https://x.example.com/posting/778900"))
        self.assertNotEqual(
            job_id("example", "https://x.example.com/jobs/2026/role-a"),
            job_id("example", "https://x.example.com/jobs/2026/role-b"),
        )
        hashed = job_id("example", "https://x.example.com/posting/backend-engineer")
        self.assertEqual(hashed, job_id("example", "https://x.example.com/posting/backend-engineer?ref=home"))

    def test_job_id_uses_the_varying_slot(self):
        pattern = "/companies/5555/job_postings/{id}"
        a = job_id("examplejobs", "https://jobs.example.com/companies/5555/job_postings/70001", pattern)
        b = job_id("examplejobs", "https://jobs.example.com/companies/5555/job_postings/70002", pattern)
        self.assertEqual((a, b), ("examplejobs-70001", "examplejobs-70002"))

    def test_company_id(self):
        self.assertEqual(company_id("Acme Corp"), "company-acme-corp")
        self.assertEqual(company_id("(주)테스트랩"), "company-주-테스트랩")

    def test_unique_items(self):
        self.assertEqual(unique_items(["Python", "python ", "AWS", "Django"], sort=True), ["AWS", "Django", "Python"])


if __name__ == "__main__":
    unittest.main()

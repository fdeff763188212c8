import unittest

from crawl_fixtures import SARAMIN_CARD, TODAY, listing_page

from job_crawler.config import load_config
from job_crawler.errors import ExtractionAnomaly
from job_crawler.extract import extract_detail, extract_job, extract_page, parse_html
from job_crawler.models import FieldSelector, SitePattern, Transform, WorkType

LIST_URL = "https://jobs.example.com/search?q=python&page=1"


def _listing_pattern(**overrides) -> SitePattern:
    data = dict(
        domain="jobs.example.com",
        name="examplejobs",
        list_page_pattern="https://jobs.example.com/search?q={keyword}&page={page}",
        detail_page_pattern="/jobs/view/{id}",
        card_selector="li.job-card",
        selectors={
            "title": FieldSelector(locator="h3.job-title"),
            "detail_link": FieldSelector(locator=":scope > h3 > a", attr="href", transform=Transform.url),
            "company": FieldSelector(locator="span.company-name"),
            "location": FieldSelector(locator="span.job-location"),
            "salary": FieldSelector(locator="span.salary", transform=Transform.salary),
            "deadline": FieldSelector(locator="span.deadline", transform=Transform.date),
        },
        confidence=1.0,
        currency="KRW",
    )
    data.update(overrides)
    return SitePattern(**data)


class TestSeedExtraction(unittest.TestCase):
    """The shipped saramin seed applied to a captured card."""

    def setUp(self):
        seed = load_config().resolve_site("saramin").seed
        self.pattern = SitePattern(
            domain="saramin.co.kr",
            name="saramin",
            list_page_pattern="https://www.saramin.co.kr/zf_user/search/recruit?searchword={keyword}",
            detail_page_pattern=seed.detail_page_pattern,
            card_selector=seed.card_selector,
            selectors=seed.selectors,
            confidence=1.0,
            currency="KRW",
            strategy="seed",
        )
        self.base_url = "https://www.saramin.co.kr/zf_user/search/recruit?searchword=python"

    def test_card_maps_to_canonical_record(self):
        card = parse_html(SARAMIN_CARD).select_one(".item_recruit")
        job = extract_job(card, self.pattern, self.base_url, TODAY)

        self.assertEqual(job.id, "saramin-48123456")
        self.assertEqual(job.source, "saramin")
        self.assertEqual(job.title, "Python 백엔드 개발자")
        self.assertEqual(job.company, "(주)테스트랩")
        self.assertEqual(job.company_id, "company-주-테스트랩")
        self.assertEqual(job.location, "서울 강남구")
        self.assertEqual((job.experience.min, job.experience.max), (3, 5))
        self.assertEqual(job.education, "대학교(4년)↑")
        self.assertEqual(job.deadline, "2026-11-15")
        self.assertEqual(job.skills, ["AWS", "Django", "Python"])
        self.assertEqual(job.work_type, WorkType.remote)
        self.assertTrue(job.source_url.startswith("https://www.saramin.co.kr/zf_user/jobs/relay/view?"))


class TestExtractPage(unittest.TestCase):
    def test_clean_page(self):
        cards, jobs, anomalies = extract_page(listing_page(), _listing_pattern(), LIST_URL, TODAY)
        self.assertEqual(cards, 10)
        self.assertEqual(len(jobs), 10)
        self.assertEqual(anomalies, [])

        first = jobs[0]
        self.assertEqual(first.id, "examplejobs-1001")
        self.assertEqual(first.source_url, "https://jobs.example.com/jobs/view/1001?utm_source=list")
        self.assertEqual(first.company, "Acme Corp")
        self.assertEqual((first.salary.min, first.salary.max, first.salary.currency), (31_000_000, 51_000_000, "KRW"))
        self.assertEqual(first.deadline, "2026-12-11")
        self.assertIsNone(first.work_type)
        self.assertEqual(jobs[2].location, "Remote")
        self.assertEqual(jobs[2].work_type, WorkType.remote)

    def test_broken_card_is_skipped_not_fatal(self):
        cards, jobs, anomalies = extract_page(listing_page(broken=(3,)), _listing_pattern(), LIST_URL, TODAY)
        self.assertEqual(cards, 10)
        self.assertEqual(len(jobs), 9)
        self.assertEqual(len(anomalies), 1)
        self.assertEqual(anomalies[0].field, "company")
        self.assertNotIn("examplejobs-1003", [j.id for j in jobs])

    def test_missing_required_field_raises(self):
        card = parse_html('<li class="job-card"><h3 class="job-title"><a href="/jobs/view/9">x job</a></h3></li>')
        with self.assertRaises(ExtractionAnomaly) as ctx:
            extract_job(card.select_one("li"), _listing_pattern(), LIST_URL, TODAY)
        self.assertEqual(ctx.exception.field, "company")

    def test_link_falls_back_to_first_anchor(self):
        pattern = _listing_pattern()
        del pattern.selectors["detail_link"]
        _, jobs, _ = extract_page(listing_page(count=3), pattern, LIST_URL, TODAY)
        self.assertEqual(jobs[0].source_url, "https://jobs.example.com/jobs/view/1001?utm_source=list")
        self.assertEqual(jobs[0].id, "examplejobs-1001")

    def test_regex_narrows_value(self):
        pattern = _listing_pattern()
        pattern.selectors["title"] = FieldSelector(locator="h3.job-title", regex=r"Engineer (\d+)")
        _, jobs, _ = extract_page(listing_page(count=2), pattern, LIST_URL, TODAY)
        self.assertEqual([j.title for j in jobs], ["1", "2"])


class TestExtractDetail(unittest.TestCase):
    def test_detail_selectors(self):
        pattern = _listing_pattern(detail_selectors={
            "description": FieldSelector(locator="div.jd"),
            "skills": FieldSelector(locator="ul.stack li", transform=Transform.list),
        })
        html = (
            '<html><body><div class="jd">Build APIs in Python.</div>'
            '<ul class="stack"><li>Python</li><li>FastAPI</li></ul></body></html>'
        )
        values = extract_detail(html, pattern, "https://jobs.example.com/jobs/view/1001", TODAY)
        self.assertEqual(values["description"], "Build APIs in Python.")
        self.assertEqual(values["skills"], ["Python", "FastAPI"])

    def test_no_detail_selectors(self):
        self.assertEqual(extract_detail("<html></html>", _listing_pattern(), LIST_URL), {})


if __name__ == "__main__":
    unittest.main()

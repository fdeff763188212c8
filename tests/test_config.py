import tempfile
import unittest
from pathlib import Path

from job_crawler.config import load_config
from job_crawler.urlnorm import (
    canonical_domain,
    canonicalize_job_url,
    detail_id_pattern,
    detail_pattern_regex,
    expand_template,
    template_from_url,
)


class TestLoadConfig(unittest.TestCase):
    def test_defaults(self):
        cfg = load_config()
        self.assertEqual(cfg.learner.min_confidence, 0.5)
        self.assertEqual(cfg.learner.max_attempts, 2)
        self.assertEqual(cfg.render.timeout_ms, 30000)
        self.assertEqual(cfg.store.max_age_days, 30)
        names = [s.name for s in cfg.sites]
        self.assertIn("saramin", names)
        saramin = cfg.resolve_site("saramin")
        self.assertEqual(saramin.seed.card_selector, ".item_recruit")

    def test_override_is_deep_merged(self):
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "override.yaml"
            path.write_text("learner:\n  min_confidence: 0.7\nrender:\n  engine: static\n", encoding="utf-8")
            cfg = load_config(path)
        self.assertEqual(cfg.learner.min_confidence, 0.7)
        self.assertEqual(cfg.learner.max_attempts, 2)
        self.assertEqual(cfg.render.engine, "static")
        self.assertEqual(cfg.render.timeout_ms, 30000)

    def test_missing_override_file_uses_defaults(self):
        cfg = load_config(Path("/nonexistent/override.yaml"))
        self.assertEqual(cfg.learner.min_confidence, 0.5)

    def test_resolve_site(self):
        cfg = load_config()
        self.assertEqual(cfg.resolve_site("www.saramin.co.kr").name, "saramin")
        self.assertEqual(cfg.resolve_site("SARAMIN").domain, "saramin.co.kr")
        unknown = cfg.resolve_site("careers.example.org")
        self.assertEqual(unknown.domain, "careers.example.org")
        self.assertEqual(unknown.list_url, "https://careers.example.org/")
        self.assertIsNone(unknown.seed)


class TestUrlNorm(unittest.TestCase):
    def test_canonical_domain(self):
        self.assertEqual(canonical_domain("https://WWW.Example.com:8080/jobs"), "example.com")
        self.assertEqual(canonical_domain("www.example.com"), "example.com")
        self.assertEqual(canonical_domain("jobs.example.com"), "jobs.example.com")

    def test_canonicalize_job_url(self):
        self.assertEqual(
            canonicalize_job_url("https://www.example.com/jobs/42/?utm_source=x&b=2&a=1#top"),
            "https://example.com/jobs/42?a=1&b=2",
        )

    def test_expand_template_drops_empty_params(self):
        template = "https://example.com/search?q={keyword}&loc={location}&page={page}"
        self.assertEqual(
            expand_template(template, {"keyword": "python dev", "location": None}, 2),
            "https://example.com/search?q=python+dev&page=2",
        )

    def test_expand_template_path_placeholder(self):
        self.assertEqual(
            expand_template("https://example.com/jobs/{keyword}/page/{page}", {"keyword": "data/ml"}, 3),
            "https://example.com/jobs/data%2Fml/page/3",
        )

    def test_template_from_url(self):
        self.assertEqual(
            template_from_url("https://example.com/search?q=python&p=2&sort=new"),
            "https://example.com/search?q={keyword}&p={page}&sort=new",
        )
        self.assertEqual(
            template_from_url("https://example.com/jobs"),
            "https://example.com/jobs?page={page}",
        )

    def test_detail_id_pattern_single_url(self):
        self.assertEqual(detail_id_pattern(["https://example.com/jobs/view/1001"]), "/jobs/view/{id}")
        self.assertEqual(detail_id_pattern(["https://example.com/view?rec_idx=123"]), "/view?rec_idx={id}")
        self.assertEqual(detail_id_pattern(["https://example.com/c/12/jobs/34"]), "/c/{n}/jobs/{id}")
        self.assertIsNone(detail_id_pattern(["https://example.com/jobs/backend"]))

    def test_detail_id_pattern_keeps_constant_runs(self):
        urls = [f"https://example.com/companies/5555/jobs/{7000 + i}" for i in range(5)]
        self.assertEqual(detail_id_pattern(urls), "/companies/5555/jobs/{id}")

        urls = [f"https://example.com/companies/{10 + i}/jobs/{7000 + i}" for i in range(5)]
        self.assertEqual(detail_id_pattern(urls), "/companies/{n}/jobs/{id}")

    def test_detail_id_pattern_without_a_varying_run(self):
        urls = [f"https://example.com/jobs/2026/role-{c}" for c in "abcde"]
        self.assertIsNone(detail_id_pattern(urls))

    def test_detail_pattern_regex(self):
        regex = detail_pattern_regex("/companies/{n}/jobs/{id}")
        self.assertEqual(regex.search("https://example.com/companies/12/jobs/7001").group(1), "7001")
        self.assertIsNone(regex.search("https://example.com/companies/12/reviews"))


if __name__ == "__main__":
    unittest.main()

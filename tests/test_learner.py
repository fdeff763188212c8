import re
import unittest
from unittest.mock import patch

from crawl_fixtures import (
    FakeRenderer,
    RoutingRenderer,
    always_timeout,
    listing_page,
    redesigned_page,
    unstructured_page,
)

from job_crawler.config import LearnerConfig
from job_crawler.errors import FetchTimeout, LearningAborted, PatternLearningFailed
from job_crawler.learner import (
    STRICT,
    WIDE,
    FieldRule,
    PatternLearner,
    default_rules,
    find_card_selector,
    hint,
    infer_pattern,
    text_match,
)
from job_crawler.extract import parse_html
from job_crawler.models import Transform

URL = "https://jobs.example.com/search?q=python&page=1"


class TestCardDetection(unittest.TestCase):
    def test_job_cards_beat_navigation(self):
        soup = parse_html(listing_page())
        self.assertEqual(find_card_selector(soup, STRICT, 3), "li.job-card")

    def test_no_repeating_structure(self):
        self.assertIsNone(find_card_selector(parse_html(unstructured_page()), STRICT, 3))
        self.assertIsNone(find_card_selector(parse_html(unstructured_page()), WIDE, 2))


class TestInferPattern(unittest.TestCase):
    def test_clean_listing(self):
        attempt = infer_pattern(listing_page(), URL, STRICT, LearnerConfig())
        self.assertEqual(attempt.card_selector, "li.job-card")
        self.assertEqual(attempt.card_count, 10)
        self.assertAlmostEqual(attempt.confidence, 1.0)
        self.assertEqual(attempt.missing, ())

        sel = attempt.selectors
        self.assertEqual(sel["title"].locator, "h3.job-title")
        self.assertEqual(sel["detail_link"].locator, ":scope > h3 > a")
        self.assertEqual(sel["detail_link"].attr, "href")
        self.assertEqual(sel["detail_link"].transform, Transform.url)
        self.assertEqual(sel["salary"].locator, "span.salary")
        self.assertEqual(sel["deadline"].locator, "span.deadline")
        self.assertEqual(sel["company"].locator, "span.company-name")
        self.assertEqual(sel["location"].locator, "span.job-location")
        self.assertEqual(attempt.detail_page_pattern, "/jobs/view/{id}")

    def test_fields_never_share_an_element(self):
        attempt = infer_pattern(listing_page(), URL, STRICT, LearnerConfig())
        text_fields = {f: s.locator for f, s in attempt.selectors.items() if s.attr is None}
        self.assertEqual(len(set(text_fields.values())), len(text_fields))

    def test_three_of_five_fields(self):
        attempt = infer_pattern(listing_page(salary=False, location=False), URL, STRICT, LearnerConfig())
        self.assertAlmostEqual(attempt.confidence, 0.6)
        self.assertNotIn("salary", attempt.selectors)
        self.assertNotIn("location", attempt.selectors)

    def test_redesigned_markup(self):
        attempt = infer_pattern(redesigned_page(), URL, STRICT, LearnerConfig())
        self.assertEqual(attempt.card_selector, "div.posting")
        self.assertEqual(attempt.selectors["company"].locator, "div.employer")
        self.assertEqual(attempt.selectors["salary"].locator, "div.pay")
        self.assertEqual(attempt.selectors["location"].locator, "div.place")
        self.assertEqual(attempt.detail_page_pattern, "/p/{id}")

    def test_detail_pattern_keeps_company_segment(self):
        page = listing_page(href="/companies/5555/job_postings/{n}")
        attempt = infer_pattern(page, URL, STRICT, LearnerConfig())
        self.assertEqual(attempt.detail_page_pattern, "/companies/5555/job_postings/{id}")

        attempt = infer_pattern(listing_page(href="/jobs/2026/engineer-role-{letter}"), URL, STRICT, LearnerConfig())
        self.assertIsNone(attempt.detail_page_pattern)


class TestPatternLearner(unittest.IsolatedAsyncioTestCase):
    async def test_learns_clean_page(self):
        learner = PatternLearner(FakeRenderer({URL: listing_page()}))
        pattern = await learner.learn(
            URL,
            name="examplejobs",
            list_url="https://jobs.example.com/search?q={keyword}&page={page}",
            domain="www.jobs.example.com",
        )
        self.assertEqual(pattern.domain, "jobs.example.com")
        self.assertEqual(pattern.name, "examplejobs")
        self.assertEqual(pattern.card_selector, "li.job-card")
        self.assertEqual(pattern.strategy, "strict")
        self.assertEqual(pattern.sample_size, 5)
        self.assertAlmostEqual(pattern.confidence, 1.0)
        self.assertEqual(learner.invocations, 1)

    async def test_list_template_derived_from_url(self):
        learner = PatternLearner(FakeRenderer({URL: listing_page()}))
        pattern = await learner.learn(URL)
        self.assertEqual(pattern.domain, "jobs.example.com")
        self.assertEqual(pattern.list_page_pattern, "https://jobs.example.com/search?q={keyword}&page={page}")

    async def test_partial_page_passes_default_threshold(self):
        learner = PatternLearner(FakeRenderer({URL: listing_page(salary=False, location=False)}))
        pattern = await learner.learn(URL)
        self.assertAlmostEqual(pattern.confidence, 0.6)

    async def test_threshold_is_configurable(self):
        learner = PatternLearner(
            FakeRenderer({URL: listing_page(salary=False, location=False)}),
            LearnerConfig(min_confidence=0.8),
        )
        with self.assertRaises(PatternLearningFailed) as ctx:
            await learner.learn(URL)
        self.assertAlmostEqual(ctx.exception.confidence, 0.6)
        self.assertAlmostEqual(ctx.exception.threshold, 0.8)

    async def test_unstructured_page_fails(self):
        renderer = FakeRenderer({URL: unstructured_page()})
        learner = PatternLearner(renderer)
        with self.assertRaises(PatternLearningFailed) as ctx:
            await learner.learn(URL)
        self.assertEqual(ctx.exception.confidence, 0.0)
        self.assertIn("title", ctx.exception.missing)
        # Both strategies probe the same page; it is rendered once.
        self.assertEqual(renderer.calls, [URL])

    async def test_single_attempt_skips_wide_probe(self):
        learner = PatternLearner(FakeRenderer({URL: listing_page(count=2)}), LearnerConfig(max_attempts=1))
        with self.assertRaises(PatternLearningFailed):
            await learner.learn(URL)

    async def test_few_cards_fall_back_to_wide_probe(self):
        learner = PatternLearner(FakeRenderer({URL: listing_page(count=2)}))
        pattern = await learner.learn(URL)
        self.assertEqual(pattern.strategy, "wide")
        self.assertEqual(pattern.card_selector, "li.job-card")

    async def test_wide_probe_uses_alternate_url(self):
        alt = "https://jobs.example.com/search?q=engineer&page=1"
        renderer = FakeRenderer({URL: listing_page(count=2), alt: listing_page()})
        learner = PatternLearner(renderer)
        pattern = await learner.learn(URL, alt_url=alt)
        self.assertEqual(renderer.calls, [URL, alt])
        self.assertEqual(pattern.strategy, "wide")
        self.assertEqual(pattern.sample_size, 5)

    async def test_render_failure_aborts(self):
        renderer = RoutingRenderer(FakeRenderer())
        renderer.route(lambda url: True, always_timeout)
        learner = PatternLearner(renderer)
        with self.assertRaises(LearningAborted) as ctx:
            await learner.learn(URL)
        self.assertIsInstance(ctx.exception.__cause__, FetchTimeout)

    async def test_no_strategy_fails_without_rendering(self):
        renderer = FakeRenderer({URL: listing_page()})
        with patch("job_crawler.learner.STRATEGIES", ()):
            with self.assertRaises(PatternLearningFailed) as ctx:
                await PatternLearner(renderer).learn(URL)
        self.assertEqual(ctx.exception.confidence, 0.0)
        self.assertIn("title", ctx.exception.missing)
        self.assertEqual(renderer.calls, [])

    async def test_custom_rules(self):
        rules = default_rules() + [
            FieldRule(
                "industry",
                gate=lambda el: el.name == "span" and "industry" in (el.get("class") or []),
                scorers=[hint({"industry"}), text_match(re.compile(r"\w"))],
            )
        ]
        page = listing_page().replace(
            '<span class="deadline">', '<span class="industry">Software</span><span class="deadline">'
        )
        learner = PatternLearner(FakeRenderer({URL: page}), rules=rules)
        pattern = await learner.learn(URL)
        self.assertEqual(pattern.selectors["industry"].locator, "span.industry")


if __name__ == "__main__":
    unittest.main()

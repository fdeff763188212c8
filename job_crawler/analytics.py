"""Cross-site analytics: group jobs by company and merge news-article insight."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Mapping, Optional, Protocol, Sequence

from .models import Article, CompanyReport, ScrapedJob

ISSUE_TYPES = ("hiring", "investment", "technology", "risk", "policy")

ISSUE_KEYWORDS: dict[str, list[str]] = {
    "hiring": [
        "채용", "모집", "인재", "공고", "구인", "신입", "경력", "면접", "입사", "증원",
        "hiring", "recruit", "headcount", "job opening",
    ],
    "investment": [
        "투자", "유치", "펀딩", "자금", "라운드", "시리즈", "IPO", "상장", "조달", "VC",
        "funding", "investment", "raised", "series a", "series b", "valuation",
    ],
    "technology": [
        "AI", "인공지능", "머신러닝", "딥러닝", "신제품", "출시", "플랫폼", "솔루션", "특허", "클라우드",
        "launch", "platform", "patent", "machine learning", "cloud",
    ],
    "risk": [
        "구조조정", "논란", "위기", "적자", "손실", "감원", "소송", "과징금", "유출", "해킹",
        "layoff", "lawsuit", "breach", "loss", "restructuring", "fine",
    ],
    "policy": [
        "정부", "규제", "법안", "제도", "정책", "승인", "인증",
        "regulation", "government", "policy", "approval", "compliance",
    ],
}

_POSITIVE = [
    "성공", "증가", "성장", "확대", "개선", "혁신", "수상", "선정", "투자유치", "출시", "협력", "제휴",
    "growth", "record", "award", "expands", "partnership", "raised",
]
_NEGATIVE = [
    "실패", "감소", "하락", "축소", "악화", "논란", "위기", "적자", "손실", "구조조정", "소송", "우려",
    "decline", "layoff", "lawsuit", "loss", "breach", "cuts",
]


def _contains(text: str, keyword: str) -> bool:
    keyword = keyword.lower()
    if keyword.isascii():
        # "ai" must not match inside "raised"
        return re.search(rf"\b{re.escape(keyword)}", text) is not None
    return keyword in text


def issue_types(text: str) -> list[str]:
    """Issue categories whose keywords appear in ``text``."""
    lowered = (text or "").lower()
    return [
        issue for issue in ISSUE_TYPES
        if any(_contains(lowered, kw) for kw in ISSUE_KEYWORDS[issue])
    ]


def sentiment(text: str) -> str:
    lowered = (text or "").lower()
    pos = sum(1 for kw in _POSITIVE if _contains(lowered, kw))
    neg = sum(1 for kw in _NEGATIVE if _contains(lowered, kw))
    if pos > neg:
        return "positive"
    if neg > pos:
        return "negative"
    return "neutral"


@dataclass
class CompanyInsight:
    article_mentions: int = 0
    issue_distribution: dict[str, int] = field(default_factory=lambda: {i: 0 for i in ISSUE_TYPES})
    sentiment: Optional[str] = None


class ArticleAnalyzer(Protocol):
    def analyze(
        self, articles: Sequence[Article], companies: Mapping[str, str]
    ) -> dict[str, CompanyInsight]:
        """Map company_id -> insight, given articles and a company_id -> name index."""
        ...


class KeywordArticleAnalyzer:
    """Attribute articles to companies by name mention and tally keyword issues."""

    def analyze(
        self, articles: Sequence[Article], companies: Mapping[str, str]
    ) -> dict[str, CompanyInsight]:
        insights: dict[str, CompanyInsight] = {}
        moods: dict[str, Counter] = {}
        for article in articles:
            text = f"{article.title} {article.content}"
            lowered = text.lower()
            issues = issue_types(text)
            mood = sentiment(text)
            for cid, name in companies.items():
                if not name or name.lower() not in lowered:
                    continue
                insight = insights.setdefault(cid, CompanyInsight())
                insight.article_mentions += 1
                for issue in issues:
                    insight.issue_distribution[issue] += 1
                moods.setdefault(cid, Counter())[mood] += 1

        for cid, counter in moods.items():
            pos, neg = counter["positive"], counter["negative"]
            insights[cid].sentiment = "positive" if pos > neg else "negative" if neg > pos else "neutral"
        return insights


def build_company_reports(
    jobs: Sequence[ScrapedJob],
    articles: Sequence[Article] = (),
    analyzer: Optional[ArticleAnalyzer] = None,
) -> list[CompanyReport]:
    """Group jobs by company_id, most jobs first, then by company name."""
    groups: dict[str, list[ScrapedJob]] = {}
    for job in jobs:
        groups.setdefault(job.company_id, []).append(job)

    insights: dict[str, CompanyInsight] = {}
    if articles:
        index = {cid: group[0].company for cid, group in groups.items()}
        insights = (analyzer or KeywordArticleAnalyzer()).analyze(articles, index)

    reports = []
    for cid, group in groups.items():
        insight = insights.get(cid)
        reports.append(CompanyReport(
            company_id=cid,
            company=group[0].company,
            job_count=len(group),
            job_ids=[j.id for j in group],
            sources=sorted({j.source for j in group}),
            article_mentions=insight.article_mentions if insight else 0,
            issue_distribution=dict(insight.issue_distribution) if insight else {},
            sentiment=insight.sentiment if insight else None,
        ))
    reports.sort(key=lambda r: (-r.job_count, r.company.lower()))
    return reports

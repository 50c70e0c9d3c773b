# =============================================================================
# Analysis agents: six specialists run side by side over one basic result
# =============================================================================
#
# Each agent computes its ``data`` block deterministically from the basic
# analysis, then asks the synthesizer for prose findings/recommendations.
# When synthesis is unavailable or yields nothing parseable the agent falls
# back to rule-based findings so the comprehensive report is never empty.
# =============================================================================

import asyncio
import logging
import re
from datetime import datetime, timezone

from models import AgentAnalysis, AgentType, AnalysisResult, BusinessIntelligence, PageSpeed
from synthesis import Synthesizer, failed

logger = logging.getLogger("seo-agents")

AGENT_TYPES: list[AgentType] = [
    "technical_seo",
    "content_analysis",
    "competitor_intelligence",
    "keyword_research",
    "serp_analysis",
    "user_experience",
]

MAX_ITEMS = 5

AGENT_SYSTEM = (
    "You are an expert SEO analyst. Provide detailed, actionable insights based on the data provided. "
    "Organise your answer under a 'Findings' heading and a 'Recommendations' heading, "
    "one bullet point per item."
)

_BULLET = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")
_MARKUP = re.compile(r"[*_#`]+")
_BOLD_LINE = re.compile(r"\*\*[^*]+\*\*:?")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_sections(
    text: str,
    finding_words: tuple[str, ...],
    recommendation_words: tuple[str, ...],
) -> tuple[list[str], list[str]]:
    """Split model prose into findings and recommendations by section heading."""
    findings: list[str] = []
    recommendations: list[str] = []
    section = ""
    for raw in text.splitlines():
        line = _MARKUP.sub("", raw).strip()
        if not line:
            continue
        lower = line.lower()
        is_bullet = bool(_BULLET.match(line))
        content = _BULLET.sub("", line).strip()
        # Numbered headings look like "1. Key findings:" or "2. **Recommendations**"
        is_heading = (
            not is_bullet
            or content.endswith(":")
            or bool(_BOLD_LINE.fullmatch(_BULLET.sub("", raw.strip())))
        )
        if is_heading and any(w in lower for w in finding_words):
            section = "findings"
        elif is_heading and any(w in lower for w in recommendation_words):
            section = "recommendations"
        elif is_bullet and content:
            if section == "findings":
                findings.append(content)
            elif section == "recommendations":
                recommendations.append(content)
    return findings[:MAX_ITEMS], recommendations[:MAX_ITEMS]


def page_speed_grade(score: int) -> str:
    if score >= 90:
        return "A"
    if score >= 80:
        return "B"
    if score >= 70:
        return "C"
    if score >= 60:
        return "D"
    return "F"


def ux_score(page_speed: PageSpeed) -> int:
    score = page_speed.mobile
    if page_speed.largest_contentful_paint > 2.5:
        score -= 10
    if page_speed.cumulative_layout_shift > 0.1:
        score -= 10
    return max(score, 0)


def core_web_vitals_grade(page_speed: PageSpeed) -> str:
    good = sum([
        page_speed.largest_contentful_paint <= 2.5,
        page_speed.cumulative_layout_shift <= 0.1,
        page_speed.first_contentful_paint <= 1.8,
    ])
    return {3: "A", 2: "B", 1: "C"}.get(good, "D")


# ---------------------------------------------------------------------------
# Base agent
# ---------------------------------------------------------------------------

class AnalysisAgent:
    agent_type: AgentType
    finding_words: tuple[str, ...] = ("finding",)
    recommendation_words: tuple[str, ...] = ("recommendation",)

    def __init__(
        self,
        domain: str,
        intel: BusinessIntelligence,
        basic: AnalysisResult,
        synthesizer: Synthesizer,
    ):
        self.domain = domain
        self.intel = intel
        self.basic = basic
        self.synthesizer = synthesizer

    def build_prompt(self) -> str:
        raise NotImplementedError

    def compute_data(self) -> dict:
        raise NotImplementedError

    def rule_based(self, data: dict) -> tuple[list[str], list[str]]:
        raise NotImplementedError

    async def analyze(self) -> AgentAnalysis:
        start_time = now_iso()
        data = self.compute_data()

        findings: list[str] = []
        recommendations: list[str] = []
        text = await self.synthesizer.synthesize_text(self.build_prompt(), system=AGENT_SYSTEM, max_tokens=1500)
        if not failed(text):
            findings, recommendations = parse_sections(text, self.finding_words, self.recommendation_words)
        if not findings and not recommendations:
            logger.info(f"{self.agent_type}: using rule-based findings")
            findings, recommendations = self.rule_based(data)

        return AgentAnalysis(
            agent_type=self.agent_type,
            status="completed",
            progress=100,
            findings=findings[:MAX_ITEMS],
            recommendations=recommendations[:MAX_ITEMS],
            data=data,
            start_time=start_time,
            end_time=now_iso(),
        )


# ---------------------------------------------------------------------------
# Specialists
# ---------------------------------------------------------------------------

class TechnicalSeoAgent(AnalysisAgent):
    agent_type = "technical_seo"

    def build_prompt(self) -> str:
        ps = self.basic.page_speed
        issues = "\n".join(f"- {i.title}: {i.description}" for i in self.basic.technical_seo.issues) or "- None detected"
        return (
            f"Analyze the technical SEO for domain: {self.domain}\n\n"
            f"Current Technical Issues:\n{issues}\n\n"
            f"Page Speed Data:\n"
            f"- Mobile Score: {ps.mobile}/100\n"
            f"- Desktop Score: {ps.desktop}/100\n"
            f"- Largest Contentful Paint: {ps.largest_contentful_paint}s\n"
            f"- Cumulative Layout Shift: {ps.cumulative_layout_shift}\n\n"
            f"Business Context: {self.intel.business_type} in {self.intel.industry}\n\n"
            "Provide:\n"
            "1. 5 key technical SEO findings\n"
            "2. 5 specific recommendations to improve technical performance\n"
            "3. Priority order for implementations"
        )

    def compute_data(self) -> dict:
        return {
            "technicalScore": self.basic.technical_seo.score,
            "criticalIssues": sum(1 for i in self.basic.technical_seo.issues if i.impact == "high"),
            "pageSpeedGrade": page_speed_grade(self.basic.page_speed.mobile),
        }

    def rule_based(self, data: dict) -> tuple[list[str], list[str]]:
        issues = self.basic.technical_seo.issues
        findings = [f"Technical SEO score is {data['technicalScore']}/100 (mobile speed grade {data['pageSpeedGrade']})"]
        findings += [f"{i.title} ({i.impact} impact)" for i in issues]
        recommendations = [i.description for i in issues] or [
            "Keep monitoring Core Web Vitals in Google Search Console",
        ]
        return findings, recommendations


class ContentAnalysisAgent(AnalysisAgent):
    agent_type = "content_analysis"
    finding_words = ("gap", "finding")
    recommendation_words = ("recommendation", "optimization")

    def build_prompt(self) -> str:
        keywords = ", ".join(k.keyword for k in self.basic.keywords)
        return (
            f"Analyze content strategy for: {self.domain}\n\n"
            f"Business Information:\n"
            f"- Type: {self.intel.business_type}\n"
            f"- Industry: {self.intel.industry}\n"
            f"- Location: {self.intel.location}\n"
            f"- Products: {', '.join(self.intel.products)}\n"
            f"- Services: {', '.join(self.intel.services)}\n\n"
            f"Target Keywords: {keywords}\n\n"
            "Analyze and provide:\n"
            "1. 5 content gaps that should be addressed\n"
            "2. 5 content optimization recommendations\n"
            "3. Content topics that would improve SEO rankings\n"
            "4. Content types that would work best for this business"
        )

    def compute_data(self) -> dict:
        keyword_count = len(self.basic.keywords)
        offerings = len(self.intel.services) + len(self.intel.products)
        score = 60 + min(keyword_count * 5, 20) + min(offerings * 3, 15)
        return {
            "contentScore": min(score, 100),
            "keywordCoverage": keyword_count,
            "industry": self.intel.industry,
        }

    def rule_based(self, data: dict) -> tuple[list[str], list[str]]:
        findings = [
            f"Content score is {data['contentScore']}/100",
            f"{data['keywordCoverage']} target keywords identified for the {data['industry']} industry",
        ]
        if not self.intel.services:
            findings.append("No clearly described services were found on the site")
        recommendations = [
            f"Create a dedicated page for each service ({', '.join(self.intel.services[:3]) or 'core services'})",
            f"Publish location pages targeting {self.intel.location_base}",
            "Add an FAQ section answering common customer questions",
        ]
        return findings, recommendations


class CompetitorIntelligenceAgent(AnalysisAgent):
    agent_type = "competitor_intelligence"
    finding_words = ("finding", "intelligence")
    recommendation_words = ("recommendation", "strategic")

    def build_prompt(self) -> str:
        competitors = "\n".join(
            f"- {c.name} (Score: {c.score}, Rank: {c.ranking})" for c in self.basic.competitors
        )
        mp = self.basic.market_position
        return (
            f"Deep competitive analysis for: {self.domain}\n\n"
            f"Business Context:\n"
            f"- Type: {self.intel.business_type}\n"
            f"- Industry: {self.intel.industry}\n"
            f"- Location: {self.intel.location}\n\n"
            f"Current Competitors:\n{competitors}\n\n"
            f"Market Position: Rank {mp.rank} of {mp.total_competitors}\n\n"
            "Analyze and provide:\n"
            "1. 5 competitive intelligence findings\n"
            "2. 5 strategic recommendations to outrank competitors\n"
            "3. Competitive advantages to leverage\n"
            "4. Market gaps to exploit"
        )

    def competitive_strength(self) -> str:
        competitors = self.basic.competitors
        if not competitors:
            return "Unknown"
        avg = sum(c.score for c in competitors) / len(competitors)
        if self.basic.seo_score > avg + 10:
            return "Strong"
        if self.basic.seo_score > avg - 5:
            return "Competitive"
        return "Needs Improvement"

    def compute_data(self) -> dict:
        return {
            "competitorCount": len(self.basic.competitors),
            "marketRank": self.basic.market_position.rank,
            "competitiveStrength": self.competitive_strength(),
        }

    def rule_based(self, data: dict) -> tuple[list[str], list[str]]:
        leaders = [c.name for c in self.basic.competitors if c.name != self.domain][:2]
        findings = [
            f"Ranked {data['marketRank']} among {data['competitorCount']} tracked sites",
            f"Competitive strength: {data['competitiveStrength']}",
        ]
        if leaders:
            findings.append(f"Strongest visible competitors: {', '.join(leaders)}")
        recommendations = [
            "Review the top-ranking competitor pages for topics you do not cover",
            "Earn reviews and local citations to close the authority gap",
        ]
        return findings, recommendations


class KeywordResearchAgent(AnalysisAgent):
    agent_type = "keyword_research"
    finding_words = ("finding", "strategy")
    recommendation_words = ("recommendation", "optimization")

    def build_prompt(self) -> str:
        keywords = "\n".join(
            f"- {k.keyword} (Volume: {k.volume}, Difficulty: {k.difficulty})" for k in self.basic.keywords
        )
        return (
            f"Advanced keyword strategy analysis for: {self.domain}\n\n"
            f"Business Context:\n"
            f"- Type: {self.intel.business_type}\n"
            f"- Industry: {self.intel.industry}\n"
            f"- Location: {self.intel.location}\n"
            f"- Services: {', '.join(self.intel.services)}\n\n"
            f"Current Keywords:\n{keywords}\n\n"
            "Provide:\n"
            "1. 5 keyword strategy findings\n"
            "2. 5 keyword optimization recommendations\n"
            "3. Untapped keyword opportunities\n"
            "4. Long-tail keyword strategies"
        )

    def compute_data(self) -> dict:
        keywords = self.basic.keywords
        return {
            "keywordCount": len(keywords),
            "avgVolume": sum(k.volume for k in keywords) / len(keywords) if keywords else 0,
            "highDifficultyCount": sum(1 for k in keywords if k.difficulty == "high"),
        }

    def rule_based(self, data: dict) -> tuple[list[str], list[str]]:
        easy = [k.keyword for k in self.basic.keywords if k.difficulty == "low"]
        findings = [
            f"{data['keywordCount']} keywords analysed, average volume {data['avgVolume']:.0f}",
            f"{data['highDifficultyCount']} keywords are highly competitive",
        ]
        recommendations = [f"Target lower-difficulty terms first: {', '.join(easy[:3])}"] if easy else []
        recommendations.append(f"Add long-tail variants combining services with {self.intel.location_base}")
        return findings, recommendations


class SerpAnalysisAgent(AnalysisAgent):
    agent_type = "serp_analysis"
    finding_words = ("finding", "positioning")
    recommendation_words = ("recommendation", "improve")

    def build_prompt(self) -> str:
        serp = self.basic.serp_presence

        def flag(found: bool) -> str:
            return "Found" if found else "Not found"

        return (
            f"SERP positioning analysis for: {self.domain}\n\n"
            f"Current SERP Presence:\n"
            f"- Organic Results: {len(serp.organic_results)} listings\n"
            f"- Maps Results: {flag(serp.maps_results.found)}\n"
            f"- Featured Snippets: {flag(serp.featured_snippets.found)}\n"
            f"- Knowledge Panel: {flag(serp.knowledge_panel.found)}\n"
            f"- News Results: {flag(serp.news_results.found)}\n"
            f"- Video Results: {flag(serp.video_results.found)}\n\n"
            f"Business: {self.intel.business_type} in {self.intel.location}\n\n"
            "Analyze and provide:\n"
            "1. 5 SERP positioning findings\n"
            "2. 5 recommendations to improve SERP visibility\n"
            "3. SERP feature opportunities\n"
            "4. Local SEO opportunities"
        )

    def compute_data(self) -> dict:
        serp = self.basic.serp_presence
        return {
            "serpFeatures": serp.feature_count(),
            "organicListings": len(serp.organic_results),
            "localPresence": serp.maps_results.found,
        }

    def rule_based(self, data: dict) -> tuple[list[str], list[str]]:
        findings = [
            f"{data['organicListings']} organic listings for the brand query",
            f"Present in {data['serpFeatures']} rich SERP features",
        ]
        recommendations = []
        if not data["localPresence"]:
            recommendations.append("Claim and complete the Google Business Profile to appear in the map pack")
        if not self.basic.serp_presence.featured_snippets.found:
            recommendations.append("Answer common questions in concise paragraphs to win featured snippets")
        recommendations.append("Add structured data (LocalBusiness, FAQ) to qualify for rich results")
        return findings, recommendations


class UserExperienceAgent(AnalysisAgent):
    agent_type = "user_experience"
    finding_words = ("finding", "experience")
    recommendation_words = ("recommendation", "improvement")

    def build_prompt(self) -> str:
        ps = self.basic.page_speed
        return (
            f"User experience analysis for: {self.domain}\n\n"
            f"Performance Metrics:\n"
            f"- Mobile Score: {ps.mobile}/100\n"
            f"- Desktop Score: {ps.desktop}/100\n"
            f"- First Contentful Paint: {ps.first_contentful_paint}s\n"
            f"- Largest Contentful Paint: {ps.largest_contentful_paint}s\n"
            f"- Cumulative Layout Shift: {ps.cumulative_layout_shift}\n\n"
            f"Business Context: {self.intel.business_type} serving {self.intel.location}\n\n"
            "Analyze and provide:\n"
            "1. 5 user experience findings\n"
            "2. 5 UX improvement recommendations\n"
            "3. Mobile optimization opportunities\n"
            "4. Performance enhancement strategies"
        )

    def compute_data(self) -> dict:
        ps = self.basic.page_speed
        return {
            "uxScore": ux_score(ps),
            "mobileOptimization": ps.mobile,
            "coreWebVitalsGrade": core_web_vitals_grade(ps),
        }

    def rule_based(self, data: dict) -> tuple[list[str], list[str]]:
        ps = self.basic.page_speed
        findings = [
            f"UX score is {data['uxScore']}/100 with Core Web Vitals grade {data['coreWebVitalsGrade']}",
            f"First Contentful Paint {ps.first_contentful_paint}s, Largest Contentful Paint {ps.largest_contentful_paint}s",
        ]
        recommendations = []
        if ps.largest_contentful_paint > 2.5:
            recommendations.append("Compress hero images and preload the largest above-the-fold asset")
        if ps.cumulative_layout_shift > 0.1:
            recommendations.append("Reserve space for images and embeds to stop layout shifts")
        recommendations.append("Test key conversion paths on a mid-range mobile device")
        return findings, recommendations


AGENT_CLASSES: dict[str, type[AnalysisAgent]] = {
    "technical_seo": TechnicalSeoAgent,
    "content_analysis": ContentAnalysisAgent,
    "competitor_intelligence": CompetitorIntelligenceAgent,
    "keyword_research": KeywordResearchAgent,
    "serp_analysis": SerpAnalysisAgent,
    "user_experience": UserExperienceAgent,
}


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

class AgentCoordinator:
    def __init__(self, synthesizer: Synthesizer, agent_types: list[AgentType] = AGENT_TYPES):
        self.synthesizer = synthesizer
        self.agent_types = agent_types

    async def run(self, domain: str, intel: BusinessIntelligence, basic: AnalysisResult) -> list[AgentAnalysis]:
        """Run every agent concurrently; an agent that raises is reported as failed."""
        logger.info(f"Starting {len(self.agent_types)} agents for {domain}")
        agents = [AGENT_CLASSES[t](domain, intel, basic, self.synthesizer) for t in self.agent_types]
        started = now_iso()
        outcomes = await asyncio.gather(*(agent.analyze() for agent in agents), return_exceptions=True)

        results: list[AgentAnalysis] = []
        for agent_type, outcome in zip(self.agent_types, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"{agent_type} agent failed: {outcome}", exc_info=outcome)
                results.append(AgentAnalysis(
                    agent_type=agent_type,
                    status="failed",
                    progress=0,
                    error=str(outcome) or type(outcome).__name__,
                    start_time=started,
                    end_time=now_iso(),
                ))
            else:
                results.append(outcome)

        done = sum(1 for r in results if r.status == "completed")
        logger.info(f"Agents finished for {domain}: {done}/{len(results)} completed")
        return results

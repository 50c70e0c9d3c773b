"""
action_plan.py: turns a basic analysis plus agent findings into a plan.

Action items, competitive insights, the content strategy and the summary go
through the synthesizer; every one of them has a deterministic fallback.
Scores, timeline, quick wins, benchmarks, milestones and KPIs are always
computed locally so they are reproducible whatever the model does.
"""

import logging
from datetime import date, timedelta
from typing import Annotated, Optional

from pydantic import Field

from models import (
    ActionItem,
    ActionPlan,
    AgentAnalysis,
    AnalysisResult,
    BenchmarkScores,
    BusinessIntelligence,
    CalendarEntry,
    CompetitiveInsights,
    CompetitiveIntelligence,
    ContentStrategy,
    Kpi,
    Milestone,
    ProgressTracking,
    TopicCluster,
)
from synthesis import Synthesizer, failed

logger = logging.getLogger("seo-agents")

ActionItemList = Annotated[list[ActionItem], Field(min_length=8, max_length=12)]

ACTION_PLAN_SYSTEM = "You are an expert SEO strategist. Respond only with valid JSON."
SUMMARY_SYSTEM = "You are an SEO expert writing executive summaries. Be concise and focus on business impact."
COMPETITIVE_SYSTEM = "You are a competitive intelligence expert. Respond only with valid JSON."
CONTENT_SYSTEM = "You are a content strategy expert. Respond only with valid JSON."

ACTION_PLAN_PROMPT = """Create a comprehensive SEO action plan for: {domain}

Business Context:
- Type: {business_type}
- Industry: {industry}
- Location: {location}
- Current SEO Score: {seo_score}/100

Analysis Findings:
{findings}

Recommendations:
{recommendations}

Create 8-12 prioritized action items with EXTREMELY DETAILED step-by-step implementation directions.
Each step must be actionable with specific instructions such as which page of Google Search Console to open,
which code to add to the website, or what to update in Google Business Profile.

For each action item, provide:
- id ("action_1", "action_2", ...)
- title (clear, specific action)
- description (detailed explanation)
- priority (critical/high/medium/low)
- impact (high/medium/low)
- effort (high/medium/low)
- category (technical/content/keywords/competitors/user_experience/local_seo)
- timeframe (immediate/this_week/this_month/next_quarter)
- steps (8-15 very detailed implementation instructions, each starting "Step N:")
- tools (specific tools needed)
- expectedImprovement (what improvement to expect)
- dependencies (ids of earlier action items this one depends on, if any)

Format as a JSON array:
[
  {{
    "id": "action_1",
    "title": "Optimize Google Business Profile for Local SEO",
    "description": "Complete and optimize the listing to rank in local search results and Google Maps",
    "priority": "critical",
    "impact": "high",
    "effort": "medium",
    "category": "local_seo",
    "timeframe": "this_week",
    "steps": ["Step 1: Go to business.google.com and sign in with the business Google account", "..."],
    "tools": ["Google Business Profile", "Canva for images"],
    "expectedImprovement": "Appear in the Google Maps top 3 results",
    "dependencies": []
  }}
]

Return ONLY valid JSON with no additional text."""

SUMMARY_PROMPT = """Generate a concise executive summary for an SEO action plan:

Domain: {domain}
Business: {business_type} in {industry}
Current SEO Score: {overall}/100
Potential Score: {potential}/100

Action Items:
- {critical} critical priority items
- {high} high priority items
- {total} total action items

Write a 2-3 sentence summary focusing on the biggest opportunities and expected outcomes."""

COMPETITIVE_PROMPT = """Analyze competitive positioning for: {domain}

Business: {business_type} in {industry}
Current SEO Score: {seo_score}/100
Market Position: Rank {rank} of {total}

Competitors:
{competitors}

Agent Findings: {findings}

Provide competitive analysis in this format:
{{
  "marketPosition": "Brief description of current market position",
  "competitiveAdvantages": ["advantage 1", "advantage 2", "advantage 3"],
  "competitiveGaps": ["gap 1", "gap 2", "gap 3"],
  "opportunityAreas": ["opportunity 1", "opportunity 2", "opportunity 3"]
}}

Return only valid JSON."""

CONTENT_PROMPT = """Create a content strategy for: {domain}

Business: {business_type} in {industry}
Location: {location}
Services: {services}
Current Keywords: {keywords}

Content Agent Findings: {findings}

Generate content strategy with:
1. 5 content gaps to address
2. 3 topic clusters with keywords
3. 4-week content calendar

Format as JSON:
{{
  "contentGaps": ["gap 1", "gap 2"],
  "topicClusters": [
    {{"topic": "cluster name", "keywords": ["kw1", "kw2"], "priority": "high"}}
  ],
  "contentCalendar": [
    {{"week": "Week 1", "contentType": "Blog Post", "topic": "topic", "targetKeyword": "keyword"}}
  ]
}}

Return only valid JSON."""


# =============================================================================
# Fallback action items
# =============================================================================

FALLBACK_ACTION_ITEMS: list[dict] = [
    {
        "id": "action_1",
        "title": "Optimize Google My Business for Local SEO Dominance",
        "description": "Complete and optimize Google My Business listing to rank #1 in local search results and Google Maps",
        "priority": "critical",
        "impact": "high",
        "effort": "medium",
        "category": "local_seo",
        "timeframe": "this_week",
        "steps": [
            "Step 1: Go to business.google.com and sign in with your business Google account",
            'Step 2: Search for your business name - if not found, click "Add your business to Google"',
            "Step 3: Fill in exact business address, phone number, and website URL (must match website)",
            'Step 4: Choose the most specific business category (e.g., "Nepalese Restaurant" not just "Restaurant")',
            "Step 5: Upload high-quality photos: storefront, interior, menu items, team (minimum 10 photos)",
            'Step 6: Add business description with local keywords: "Best [business type] in [location]"',
            "Step 7: Set accurate business hours including holiday hours and special event times",
            "Step 8: Add all services offered as separate service listings in the Services section",
            "Step 9: Create Google Posts weekly with local events, menu updates, special offers",
            "Step 10: Respond to ALL customer reviews within 24 hours with personalized messages",
            "Step 11: Add FAQ section with common customer questions about location, hours, services",
            "Step 12: Enable messaging to allow direct customer contact through Google",
        ],
        "tools": ["Google My Business", "Google Posts", "Canva for images", "Business phone"],
        "expected_improvement": "Appear in Google Maps top 3 results, 40-60% increase in local visibility",
    },
    {
        "id": "action_2",
        "title": "Implement Page Speed Optimization for Core Web Vitals",
        "description": "Optimize website loading speed to meet Google Core Web Vitals requirements and improve search rankings",
        "priority": "high",
        "impact": "high",
        "effort": "medium",
        "category": "technical",
        "timeframe": "this_week",
        "steps": [
            "Step 1: Go to pagespeed.web.dev and test your website homepage",
            "Step 2: Go to search.google.com/search-console → Core Web Vitals section",
            'Step 3: Identify pages marked as "Poor" or "Needs Improvement"',
            "Step 4: Download all images from your website and go to tinypng.com",
            "Step 5: Compress each image (aim for under 100KB per image)",
            "Step 6: Replace original images with compressed versions on your website",
            "Step 7: Go to your website hosting control panel → Enable Gzip compression",
            "Step 8: If using WordPress: Install WP Rocket plugin → Enable all speed optimizations",
            "Step 9: If using custom code: Minify CSS/JS files using tools like minifier.org",
            "Step 10: Test again on PageSpeed Insights - aim for 90+ mobile score",
            "Step 11: Go to GTmetrix.com and run speed test → Fix any remaining issues",
            "Step 12: Submit improved pages to Google Search Console for re-indexing",
        ],
        "tools": ["Google PageSpeed Insights", "GTmetrix", "TinyPNG", "WP Rocket", "Google Search Console"],
        "expected_improvement": "15-25 point improvement in PageSpeed scores, better mobile rankings",
    },
    {
        "id": "action_3",
        "title": "Create SEO-Optimized Content for Target Keywords",
        "description": "Develop high-quality content targeting primary keywords to rank #1 in search results",
        "priority": "high",
        "impact": "high",
        "effort": "medium",
        "category": "content",
        "timeframe": "this_month",
        "steps": [
            "Step 1: Go to search.google.com and search for your main business keywords",
            "Step 2: Analyze top 3 competitors - note their content length, headings, topics covered",
            "Step 3: Go to answerthepublic.com and enter your main keyword for content ideas",
            "Step 4: Create a new page/blog post with URL: yoursite.com/[primary-keyword]",
            'Step 5: Write title tag: "[Primary Keyword] | [Business Name] - [Location]"',
            "Step 6: Add meta description (150-160 chars): Include keyword and call-to-action",
            "Step 7: Structure content with H1 (primary keyword), H2s (related keywords)",
            "Step 8: Write 1500+ words covering: what, why, how, benefits, local relevance",
            "Step 9: Add internal links to 3-5 other relevant pages on your website",
            "Step 10: Include 2-3 high-quality images with alt text containing keywords",
            "Step 11: Add FAQ section answering common customer questions",
            "Step 12: Go to Google Search Console → URL Inspection → Request indexing for new page",
        ],
        "tools": ["Google Search", "AnswerThePublic", "Google Search Console", "Yoast SEO", "Google Keyword Planner"],
        "expected_improvement": "Rank in top 10 for target keywords, 30-50% increase in organic traffic",
    },
    {
        "id": "action_4",
        "title": "Fix Critical Technical SEO Issues",
        "description": "Address technical issues that prevent Google from properly crawling and ranking your website",
        "priority": "high",
        "impact": "medium",
        "effort": "low",
        "category": "technical",
        "timeframe": "this_week",
        "steps": [
            "Step 1: Go to search.google.com/search-console → Coverage section",
            'Step 2: Fix all "Error" pages listed (404s, server errors, redirect loops)',
            "Step 3: Go to search.google.com/search-console → Sitemaps → Submit XML sitemap",
            "Step 4: Check your website code: Add <title> tags to ALL pages",
            "Step 5: Add meta descriptions to ALL pages (unique, 150-160 characters each)",
            "Step 6: Go through your website and add alt text to ALL images",
            "Step 7: Fix any broken internal links (use tools like brokenlinkcheck.com)",
            "Step 8: Ensure your website has SSL certificate (URL starts with https://)",
            "Step 9: Create robots.txt file and upload to yoursite.com/robots.txt",
            "Step 10: Add structured data markup for business information (use schema.org)",
            "Step 11: Go to search.google.com/search-console → Mobile Usability → Fix issues",
            "Step 12: Test website on mobile phone - ensure all buttons/links work",
        ],
        "tools": ["Google Search Console", "Broken Link Checker", "SSL Certificate Check", "Schema Markup Generator"],
        "expected_improvement": "Better crawlability, indexing, and mobile rankings",
    },
    {
        "id": "action_5",
        "title": "Build Local Citations and Business Listings",
        "description": "Create consistent business listings across the web to improve local search authority",
        "priority": "medium",
        "impact": "high",
        "effort": "medium",
        "category": "local_seo",
        "timeframe": "this_month",
        "steps": [
            "Step 1: Create accounts on Yelp.com, Facebook Business, TripAdvisor",
            "Step 2: Ensure NAP (Name, Address, Phone) is EXACTLY the same across all platforms",
            "Step 3: Go to moz.com/local/search and find other relevant local directories",
            "Step 4: Submit business to Yellow Pages, Foursquare, and industry-specific directories",
            "Step 5: Create profiles on review sites specific to your industry",
            "Step 6: Add your website URL, business hours, and description to each listing",
            "Step 7: Upload the same business photos across all platforms",
            "Step 8: Set up Google Alerts for your business name to monitor mentions",
            "Step 9: Encourage satisfied customers to leave reviews on these platforms",
            "Step 10: Respond to all reviews (positive and negative) professionally",
            "Step 11: Join local business associations and get listed on their websites",
            "Step 12: Reach out to local news websites and offer to write expert articles",
        ],
        "tools": ["Yelp", "Facebook Business", "TripAdvisor", "Yellow Pages", "Google Alerts", "Moz Local"],
        "expected_improvement": "Higher local search rankings, increased online authority, more customer trust",
    },
]


def fallback_action_items() -> list[ActionItem]:
    return [ActionItem(**item) for item in FALLBACK_ACTION_ITEMS]


def prune_dependencies(items: list[ActionItem]) -> list[ActionItem]:
    """Keep only dependencies on items listed earlier, so the plan stays acyclic."""
    seen: set[str] = set()
    pruned = []
    for item in items:
        if item.dependencies is not None:
            item = item.model_copy(update={"dependencies": [d for d in item.dependencies if d in seen]})
        seen.add(item.id)
        pruned.append(item)
    return pruned


# =============================================================================
# Deterministic calculations
# =============================================================================

def _agent(agent_results: list[AgentAnalysis], agent_type: str) -> Optional[AgentAnalysis]:
    return next((a for a in agent_results if a.agent_type == agent_type), None)


def _agent_value(agent_results: list[AgentAnalysis], agent_type: str, key: str):
    agent = _agent(agent_results, agent_type)
    if agent is None or agent.status != "completed" or not agent.data:
        return None
    return agent.data.get(key)


def overall_score(basic: Optional[AnalysisResult], agent_results: list[AgentAnalysis]) -> int:
    score: float = basic.seo_score if basic and basic.seo_score else 60
    for agent in agent_results:
        if agent.status != "completed" or not agent.data:
            continue
        for key in ("technicalScore", "contentScore", "uxScore"):
            if agent.data.get(key):
                score = (score + agent.data[key]) / 2
    return round(max(min(score, 100), 0))


def potential_improvement(overall: int, agent_results: list[AgentAnalysis]) -> int:
    gain = 0
    critical = _agent_value(agent_results, "technical_seo", "criticalIssues")
    if critical:
        gain += critical * 5
    coverage = _agent_value(agent_results, "content_analysis", "keywordCoverage")
    if coverage is not None and coverage < 10:
        gain += 15
    mobile = _agent_value(agent_results, "user_experience", "mobileOptimization")
    if mobile is not None and mobile < 70:
        gain += 20
    return round(min(overall + gain, 95))


def build_timeline(items: list[ActionItem]) -> str:
    counts = {tf: sum(1 for i in items if i.timeframe == tf) for tf in ("immediate", "this_week", "this_month", "next_quarter")}
    labels = {
        "immediate": "immediate actions",
        "this_week": "this week",
        "this_month": "this month",
        "next_quarter": "next quarter",
    }
    parts = [f"{n} {labels[tf]}" for tf, n in counts.items() if n > 0]
    return ", ".join(parts) or "4-6 weeks for full implementation"


def quick_wins(items: list[ActionItem]) -> list[str]:
    return [
        i.title for i in items
        if i.timeframe in ("immediate", "this_week") and i.effort == "low" and i.impact in ("high", "medium")
    ][:5]


def long_term_goals(items: list[ActionItem]) -> list[str]:
    return [i.title for i in items if i.timeframe in ("this_month", "next_quarter") and i.impact == "high"][:5]


def fallback_summary(overall: int, potential: int, count: int) -> str:
    return (
        f"Your website currently scores {overall}/100 for SEO performance. "
        f"By implementing the {count} recommended actions, you could potentially reach {potential}/100, "
        "significantly improving your search visibility and organic traffic."
    )


def benchmark_scores(basic: Optional[AnalysisResult], agent_results: list[AgentAnalysis]) -> BenchmarkScores:
    base = basic.seo_score if basic and basic.seo_score else 60
    technical = basic.technical_seo.score if basic and basic.technical_seo.score else base
    content = _agent_value(agent_results, "content_analysis", "contentScore") or base * 0.85
    ux = _agent_value(agent_results, "user_experience", "uxScore") or base * 0.8
    serp_features = _agent_value(agent_results, "serp_analysis", "serpFeatures") or 0
    return BenchmarkScores(
        content=round(content),
        technical=round(technical * 0.9),
        authority=round(min(base + serp_features * 5, 90)),
        user_experience=round(ux),
    )


def fallback_content_strategy(intel: BusinessIntelligence) -> ContentStrategy:
    return ContentStrategy(
        content_gaps=[
            "Service pages need optimization",
            "Blog content for target keywords",
            "Local content for geographic targeting",
            "FAQ section for common queries",
            "Case studies and testimonials",
        ],
        topic_clusters=[
            TopicCluster(
                topic=f"{intel.industry} Services",
                keywords=list(intel.services[:3]) or ["services", "solutions"],
                priority="high",
            ),
            TopicCluster(
                topic=f"Local {intel.business_type}",
                keywords=[f"{intel.location} {intel.business_type}", "local services"],
                priority="medium",
            ),
        ],
        content_calendar=[
            CalendarEntry(week="Week 1", content_type="Service Page", topic="Core Services Overview",
                          target_keyword=intel.services[0] if intel.services else "services"),
            CalendarEntry(week="Week 2", content_type="Blog Post", topic="Industry Insights",
                          target_keyword=f"{intel.industry} tips"),
            CalendarEntry(week="Week 3", content_type="FAQ Page", topic="Common Questions",
                          target_keyword=f"{intel.business_type} questions"),
            CalendarEntry(week="Week 4", content_type="Case Study", topic="Success Stories",
                          target_keyword=f"{intel.business_type} results"),
        ],
    )


def build_milestones(items: list[ActionItem], today: date) -> list[Milestone]:
    def due(days: int) -> str:
        return (today + timedelta(days=days)).isoformat()

    return [
        Milestone(
            title="Quick Wins Implementation",
            due_date=due(7),
            action_items=[i.id for i in items if i.timeframe in ("immediate", "this_week")][:3],
        ),
        Milestone(
            title="Technical SEO Improvements",
            due_date=due(21),
            action_items=[i.id for i in items if i.category == "technical"],
        ),
        Milestone(
            title="Content Strategy Launch",
            due_date=due(30),
            action_items=[i.id for i in items if i.category == "content"],
        ),
        Milestone(
            title="Comprehensive SEO Optimization",
            due_date=due(90),
            action_items=[i.id for i in items],
        ),
    ]


def build_kpis(basic: Optional[AnalysisResult]) -> list[Kpi]:
    seo = basic.seo_score if basic and basic.seo_score else 60
    mobile = basic.page_speed.mobile if basic and basic.page_speed.mobile else 70
    keyword_count = len(basic.keywords) if basic and basic.keywords else 5
    technical = basic.technical_seo.score if basic and basic.technical_seo.score else 75
    return [
        Kpi(metric="Overall SEO Score", current=seo, target=min(seo + 25, 90), timeframe="3 months"),
        Kpi(metric="Mobile Speed Score", current=mobile, target=min(mobile + 15, 95), timeframe="1 month"),
        Kpi(metric="Keyword Rankings (Top 10)", current=0, target=min(keyword_count * 2, 15), timeframe="3 months"),
        Kpi(metric="Organic Traffic Increase (%)", current=0, target=50, timeframe="6 months"),
        Kpi(metric="Technical SEO Score", current=technical, target=95, timeframe="2 months"),
    ]


# =============================================================================
# Generator
# =============================================================================

class ActionPlanGenerator:
    def __init__(
        self,
        synthesizer: Synthesizer,
        domain: str,
        agent_results: list[AgentAnalysis],
        intel: BusinessIntelligence,
        basic: Optional[AnalysisResult] = None,
    ):
        self.synthesizer = synthesizer
        self.domain = domain
        self.agent_results = agent_results
        self.intel = intel
        self.basic = basic

    async def generate_action_items(self) -> list[ActionItem]:
        findings = [f for a in self.agent_results for f in a.findings]
        recommendations = [r for a in self.agent_results for r in a.recommendations]
        prompt = ACTION_PLAN_PROMPT.format(
            domain=self.domain,
            business_type=self.intel.business_type,
            industry=self.intel.industry,
            location=self.intel.location,
            seo_score=self.basic.seo_score if self.basic else "unknown",
            findings="\n".join(f"{i}. {f}" for i, f in enumerate(findings, 1)) or "None available",
            recommendations="\n".join(f"{i}. {r}" for i, r in enumerate(recommendations, 1)) or "None available",
        )
        items = await self.synthesizer.synthesize(prompt, ActionItemList, system=ACTION_PLAN_SYSTEM, max_tokens=4000)
        if failed(items):
            logger.warning(f"Action item synthesis unusable for {self.domain}, using fallback items")
            return fallback_action_items()
        return prune_dependencies(items)

    async def generate_summary(self, items: list[ActionItem], overall: int, potential: int) -> str:
        prompt = SUMMARY_PROMPT.format(
            domain=self.domain,
            business_type=self.intel.business_type,
            industry=self.intel.industry,
            overall=overall,
            potential=potential,
            critical=sum(1 for i in items if i.priority == "critical"),
            high=sum(1 for i in items if i.priority == "high"),
            total=len(items),
        )
        text = await self.synthesizer.synthesize_text(prompt, system=SUMMARY_SYSTEM, max_tokens=200)
        if failed(text):
            return fallback_summary(overall, potential, len(items))
        return text

    async def generate_action_plan(self) -> ActionPlan:
        logger.info(f"Generating action plan for {self.domain}")
        items = await self.generate_action_items()
        overall = overall_score(self.basic, self.agent_results)
        potential = potential_improvement(overall, self.agent_results)
        summary = await self.generate_summary(items, overall, potential)
        return ActionPlan(
            summary=summary,
            overall_score=overall,
            potential_improvement=potential,
            timeline=build_timeline(items),
            items=items,
            quick_wins=quick_wins(items),
            long_term_goals=long_term_goals(items),
        )

    async def generate_competitive_intelligence(self) -> CompetitiveIntelligence:
        agent = _agent(self.agent_results, "competitor_intelligence")
        competitors = self.basic.competitors if self.basic else []
        prompt = COMPETITIVE_PROMPT.format(
            domain=self.domain,
            business_type=self.intel.business_type,
            industry=self.intel.industry,
            seo_score=self.basic.seo_score if self.basic else "unknown",
            rank=self.basic.market_position.rank if self.basic else "unknown",
            total=self.basic.market_position.total_competitors if self.basic else "unknown",
            competitors="\n".join(f"- {c.name} (Score: {c.score})" for c in competitors) or "- None identified",
            findings="; ".join(agent.findings) if agent and agent.findings else "None available",
        )
        insights = await self.synthesizer.synthesize(prompt, CompetitiveInsights, system=COMPETITIVE_SYSTEM, max_tokens=800)
        if failed(insights):
            insights = CompetitiveInsights(
                market_position=f"Positioned as a {self.intel.business_type} competitor in the {self.intel.industry} space",
                competitive_advantages=["Unique business positioning", "Local market presence", "Specialized services"],
                competitive_gaps=["SEO optimization needed", "Digital presence improvement", "Content strategy enhancement"],
                opportunity_areas=["Local SEO optimization", "Content marketing expansion", "Technical SEO improvements"],
            )
        return CompetitiveIntelligence(
            **insights.model_dump(),
            benchmark_scores=benchmark_scores(self.basic, self.agent_results),
        )

    async def generate_content_strategy(self) -> ContentStrategy:
        agent = _agent(self.agent_results, "content_analysis")
        keywords = self.basic.keywords if self.basic else []
        prompt = CONTENT_PROMPT.format(
            domain=self.domain,
            business_type=self.intel.business_type,
            industry=self.intel.industry,
            location=self.intel.location,
            services=", ".join(self.intel.services),
            keywords=", ".join(k.keyword for k in keywords),
            findings="; ".join(agent.findings) if agent and agent.findings else "None available",
        )
        strategy = await self.synthesizer.synthesize(prompt, ContentStrategy, system=CONTENT_SYSTEM, max_tokens=1200)
        if failed(strategy) or not strategy.content_gaps:
            return fallback_content_strategy(self.intel)
        return strategy

    def generate_progress_tracking(self, items: list[ActionItem], today: Optional[date] = None) -> ProgressTracking:
        return ProgressTracking(
            milestones=build_milestones(items, today or date.today()),
            kpis=build_kpis(self.basic),
        )

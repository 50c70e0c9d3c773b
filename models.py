"""
models.py: pydantic models for analysis results, action plans and jobs.

Attributes are snake_case in Python and camelCase on the wire
(``seo_score`` ↔ ``seoScore``). Either spelling is accepted on input so
synthesized JSON can be validated directly against these models.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

Level = Literal["high", "medium", "low"]
Priority = Literal["critical", "high", "medium", "low"]
Category = Literal["technical", "content", "keywords", "competitors", "user_experience", "local_seo"]
Timeframe = Literal["immediate", "this_week", "this_month", "next_quarter"]
AgentType = Literal[
    "technical_seo",
    "content_analysis",
    "competitor_intelligence",
    "keyword_research",
    "serp_analysis",
    "user_experience",
]
JobStatus = Literal["running", "completed", "failed"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Business intelligence
# ---------------------------------------------------------------------------

class BusinessIntelligence(CamelModel):
    model_config = ConfigDict(frozen=True)

    business_type: str
    industry: str
    location: str
    products: list[str] = []
    services: list[str] = []
    keywords: list[str] = Field(default_factory=list, max_length=15)
    description: str

    @property
    def location_base(self) -> str:
        """First comma-separated part of the location, e.g. 'Brisbane' from 'Brisbane, QLD'."""
        return self.location.split(",")[0].strip()


class BusinessProfile(CamelModel):
    """Projection of BusinessIntelligence returned inside an AnalysisResult."""

    business_type: str
    industry: str
    location: str
    products: list[str]
    services: list[str]
    description: str

    @classmethod
    def from_intel(cls, intel: BusinessIntelligence) -> "BusinessProfile":
        return cls(
            business_type=intel.business_type,
            industry=intel.industry,
            location=intel.location,
            products=list(intel.products),
            services=list(intel.services),
            description=intel.description,
        )


# ---------------------------------------------------------------------------
# Provider data
# ---------------------------------------------------------------------------

class PageSpeed(CamelModel):
    mobile: int = Field(ge=0, le=100)
    desktop: int = Field(ge=0, le=100)
    first_contentful_paint: float
    largest_contentful_paint: float
    cumulative_layout_shift: float


class Issue(CamelModel):
    title: str
    impact: Level
    description: str


class TechnicalSeo(CamelModel):
    score: int = Field(ge=0, le=100)
    issues: list[Issue] = []


class Competitor(CamelModel):
    name: str
    score: int
    ranking: int = Field(ge=1)


class KeywordMetric(CamelModel):
    keyword: str
    position: Optional[int] = None
    difficulty: Level
    volume: int = Field(ge=0)


class OrganicListing(CamelModel):
    position: Optional[int] = None
    url: str
    title: str = ""
    snippet: str = ""


class PaidAd(CamelModel):
    position: int
    url: str
    title: str = ""
    description: str = ""


class ImagesPresence(CamelModel):
    found: bool = False
    count: int = 0
    examples: list[str] = []


class MapsPresence(CamelModel):
    found: bool = False
    position: Optional[int] = None
    business_name: str = ""
    address: str = ""
    rating: Optional[float] = None


class PeopleAlsoAsk(CamelModel):
    questions: list[str] = []
    related_to_website: bool = False


class FeaturedSnippet(CamelModel):
    found: bool = False
    type: str = "paragraph"
    content: str = ""


class KnowledgePanel(CamelModel):
    found: bool = False
    type: str = "business"
    content: str = ""


class NewsArticle(CamelModel):
    title: str
    source: str = ""
    date: str = ""


class NewsPresence(CamelModel):
    found: bool = False
    articles: list[NewsArticle] = []


class VideoItem(CamelModel):
    title: str
    platform: str = "YouTube"
    url: str = ""


class VideoPresence(CamelModel):
    found: bool = False
    videos: list[VideoItem] = []


class SerpPresence(CamelModel):
    organic_results: list[OrganicListing] = []
    paid_ads: list[PaidAd] = []
    images_results: ImagesPresence = ImagesPresence()
    maps_results: MapsPresence = MapsPresence()
    people_also_ask: PeopleAlsoAsk = PeopleAlsoAsk()
    featured_snippets: FeaturedSnippet = FeaturedSnippet()
    knowledge_panel: KnowledgePanel = KnowledgePanel()
    news_results: NewsPresence = NewsPresence()
    video_results: VideoPresence = VideoPresence()

    def feature_count(self) -> int:
        """Number of rich SERP features the domain shows up in."""
        flags = [
            self.featured_snippets.found,
            self.knowledge_panel.found,
            self.maps_results.found,
            self.news_results.found,
            self.video_results.found,
            self.images_results.found,
        ]
        return sum(1 for f in flags if f)


# ---------------------------------------------------------------------------
# Analysis result
# ---------------------------------------------------------------------------

class MarketPosition(CamelModel):
    rank: int = Field(ge=1)
    total_competitors: int
    market_share: int


class AnalysisResult(CamelModel):
    model_config = ConfigDict(frozen=True)

    seo_score: int = Field(ge=0, le=100)
    domain: str
    page_speed: PageSpeed
    technical_seo: TechnicalSeo
    competitors: list[Competitor]
    keywords: list[KeywordMetric] = Field(max_length=15)
    improvements: list[Issue] = Field(max_length=4)
    market_position: MarketPosition
    serp_presence: SerpPresence
    business_intelligence: BusinessProfile
    is_demo_mode: bool
    demo_message: Optional[str] = None

    @model_validator(mode="after")
    def rankings_contiguous(self) -> "AnalysisResult":
        ranks = sorted(c.ranking for c in self.competitors)
        if ranks != list(range(1, len(ranks) + 1)):
            raise ValueError(f"Competitor rankings must be unique and contiguous from 1, got {ranks}")
        return self


# ---------------------------------------------------------------------------
# Agents & action plan
# ---------------------------------------------------------------------------

class AgentAnalysis(CamelModel):
    agent_type: AgentType
    status: Literal["pending", "running", "completed", "failed"] = "pending"
    progress: int = 0
    findings: list[str] = []
    recommendations: list[str] = []
    data: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    start_time: str
    end_time: Optional[str] = None


class ActionItem(CamelModel):
    id: str
    title: str
    description: str
    priority: Priority
    impact: Level
    effort: Level
    category: Category
    timeframe: Timeframe
    steps: list[str] = Field(min_length=1)
    expected_improvement: str
    tools: Optional[list[str]] = None
    dependencies: Optional[list[str]] = None


class ActionPlan(CamelModel):
    summary: str = ""
    overall_score: int = 0
    potential_improvement: int = 0
    timeline: str = ""
    items: list[ActionItem] = []
    quick_wins: list[str] = []
    long_term_goals: list[str] = []


class BenchmarkScores(CamelModel):
    content: int = 0
    technical: int = 0
    authority: int = 0
    user_experience: int = 0


class CompetitiveInsights(CamelModel):
    """The synthesized half of CompetitiveIntelligence."""

    market_position: str
    competitive_advantages: list[str]
    competitive_gaps: list[str]
    opportunity_areas: list[str]


class CompetitiveIntelligence(CamelModel):
    market_position: str = ""
    competitive_advantages: list[str] = []
    competitive_gaps: list[str] = []
    opportunity_areas: list[str] = []
    benchmark_scores: BenchmarkScores = BenchmarkScores()


class TopicCluster(CamelModel):
    topic: str
    keywords: list[str]
    priority: Level


class CalendarEntry(CamelModel):
    week: str
    content_type: str
    topic: str
    target_keyword: str


class ContentStrategy(CamelModel):
    content_gaps: list[str] = []
    topic_clusters: list[TopicCluster] = []
    content_calendar: list[CalendarEntry] = []


class Milestone(CamelModel):
    title: str
    due_date: str
    status: Literal["not_started", "in_progress", "completed"] = "not_started"
    action_items: list[str] = []


class Kpi(CamelModel):
    metric: str
    current: float
    target: float
    timeframe: str


class ProgressTracking(CamelModel):
    milestones: list[Milestone] = []
    kpis: list[Kpi] = []


# ---------------------------------------------------------------------------
# Comprehensive analysis job
# ---------------------------------------------------------------------------

class AnalysisJob(CamelModel):
    id: str
    domain: str
    status: JobStatus = "running"
    progress: int = Field(default=0, ge=0, le=100)
    created_at: str
    completed_at: Optional[str] = None
    error: Optional[str] = None
    basic_analysis: Optional[AnalysisResult] = None
    agent_results: list[AgentAnalysis] = []
    action_plan: ActionPlan = ActionPlan()
    competitive_intelligence: CompetitiveIntelligence = CompetitiveIntelligence()
    content_strategy: ContentStrategy = ContentStrategy()
    progress_tracking: ProgressTracking = ProgressTracking()

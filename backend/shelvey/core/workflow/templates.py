"""
Phase, team and deliverable templates.

Every project is initialized from these definitions: six phases, one team
per phase, and a fixed deliverable list per phase number.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class MemberTemplate:
    agent_id: str
    agent_name: str
    role: str  # manager, lead, member


@dataclass(frozen=True)
class DeliverableTemplate:
    name: str
    type: str
    description: str


@dataclass(frozen=True)
class PhaseTemplate:
    number: int
    name: str
    division: str
    team_name: str
    members: tuple[MemberTemplate, ...] = field(default_factory=tuple)
    deliverables: tuple[DeliverableTemplate, ...] = field(default_factory=tuple)


TOTAL_PHASES = 6


PHASE_TEMPLATES: dict[int, PhaseTemplate] = {
    1: PhaseTemplate(
        number=1,
        name="Research & Discovery",
        division="research",
        team_name="Research Team",
        members=(
            MemberTemplate("head-of-research", "Head of Research", "manager"),
            MemberTemplate("market-analyst", "Market Analyst", "lead"),
            MemberTemplate("trend-forecaster", "Trend Forecaster", "member"),
        ),
        deliverables=(
            DeliverableTemplate("Market Analysis", "analysis", "Comprehensive market research and opportunity assessment"),
            DeliverableTemplate("Competitor Report", "report", "Analysis of direct and indirect competitors"),
            DeliverableTemplate("Trend Forecast", "report", "Industry trends and future predictions"),
            DeliverableTemplate("Target Audience Profile", "document", "Detailed customer personas and segments"),
        ),
    ),
    2: PhaseTemplate(
        number=2,
        name="Brand & Identity",
        division="brand",
        team_name="Brand & Design Team",
        members=(
            MemberTemplate("creative-director", "Creative Director", "manager"),
            MemberTemplate("brand-designer", "Brand Designer", "lead"),
            MemberTemplate("visual-artist", "Visual Artist", "member"),
        ),
        deliverables=(
            DeliverableTemplate("Brand Assets", "brand_assets", "Logos, icons, color palette, and social banners"),
        ),
    ),
    3: PhaseTemplate(
        number=3,
        name="Development & Build",
        division="development",
        team_name="Development Team",
        members=(
            MemberTemplate("head-of-development", "Head of Development", "manager"),
            MemberTemplate("product-architect", "Product Architect", "lead"),
            MemberTemplate("qa-engineer", "QA Engineer", "member"),
        ),
        deliverables=(
            DeliverableTemplate("Website Design", "design", "UI/UX design for main website"),
            DeliverableTemplate("Website Development", "code", "Fully functional responsive website"),
            DeliverableTemplate("Payment Integration", "code", "Payment processing setup"),
            DeliverableTemplate("Analytics Setup", "configuration", "Analytics and tracking setup"),
        ),
    ),
    4: PhaseTemplate(
        number=4,
        name="Content Creation",
        division="content",
        team_name="Content Team",
        members=(
            MemberTemplate("content-director", "Content Director", "manager"),
            MemberTemplate("copywriter", "Copywriter", "lead"),
            MemberTemplate("seo-specialist", "SEO Specialist", "member"),
        ),
        deliverables=(
            DeliverableTemplate("Website Copy", "content", "All website text content"),
            DeliverableTemplate("Blog Posts", "content", "Initial blog content for SEO"),
            DeliverableTemplate("Email Templates", "content", "Welcome, nurture, and promotional emails"),
            DeliverableTemplate("Social Media Content", "content", "Initial social media posts and calendar"),
        ),
    ),
    5: PhaseTemplate(
        number=5,
        name="Marketing Launch",
        division="marketing",
        team_name="Marketing Team",
        members=(
            MemberTemplate("head-of-marketing", "Head of Marketing", "manager"),
            MemberTemplate("social-media-manager", "Social Media Manager", "lead"),
            MemberTemplate("ads-specialist", "Ads Specialist", "member"),
        ),
        deliverables=(
            DeliverableTemplate("Marketing Strategy", "document", "Go-to-market strategy and channel plan"),
            DeliverableTemplate("Social Media Campaigns", "campaign", "Launch campaigns for all social platforms"),
            DeliverableTemplate("Ad Creatives", "design", "Paid advertising creative assets"),
            DeliverableTemplate("Influencer Partnerships", "partnerships", "Influencer outreach and partnership agreements"),
        ),
    ),
    6: PhaseTemplate(
        number=6,
        name="Sales & Growth",
        division="sales",
        team_name="Sales Team",
        members=(
            MemberTemplate("head-of-sales", "Head of Sales", "manager"),
            MemberTemplate("sales-development-rep", "Sales Development Rep", "lead"),
            MemberTemplate("customer-success", "Customer Success Agent", "member"),
        ),
        deliverables=(
            DeliverableTemplate("Sales Playbook", "document", "Sales process, scripts, and objection handling"),
            DeliverableTemplate("Lead Pipeline", "data", "Qualified leads and pipeline management"),
            DeliverableTemplate("Revenue Report", "report", "Revenue tracking and growth metrics"),
            DeliverableTemplate("Customer Onboarding", "process", "Customer onboarding process and materials"),
        ),
    ),
}


def get_phase_template(phase_number: int) -> PhaseTemplate:
    """Get the template for a phase number (1-6)."""
    try:
        return PHASE_TEMPLATES[phase_number]
    except KeyError:
        raise ValueError(f"Invalid phase number: {phase_number}. Valid: 1-{TOTAL_PHASES}")

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from shared.job_sync.models import Category

DEFAULT_CATEGORY_ID = 1

TITLE_WEIGHT = 5
TAG_WEIGHT = 3
DESCRIPTION_WEIGHT = 1


@dataclass(frozen=True)
class CategoryRule:
    category: Category
    keywords: Tuple[str, ...]


# Declaration order is the tie-break order.
CATEGORY_RULES: Tuple[CategoryRule, ...] = (
    CategoryRule(
        Category(1, "Programming & Development", "programming-development",
                 "Software development, web development, mobile apps, and coding roles"),
        (
            "developer", "engineer", "programmer", "software", "frontend", "backend",
            "full stack", "fullstack", "web developer", "mobile developer", "react",
            "angular", "vue", "node", "python", "java", "javascript", "typescript",
            "php", "ruby", "golang", "rust", "kotlin", "swift", "flutter", "ios",
            "android", "coding", "dev", "programming",
        ),
    ),
    CategoryRule(
        Category(2, "Project Management", "project-management",
                 "Project managers, program managers, scrum masters, and agile roles"),
        (
            "project manager", "scrum master", "agile", "program manager", "delivery manager",
            "pmo", "kanban", "project coordinator", "technical project manager", "tpm",
            "technical program manager",
        ),
    ),
    CategoryRule(
        Category(9, "Product Management", "product-management",
                 "Product managers, product owners, and product leadership roles"),
        (
            "product manager", "product owner", "product lead", "head of product", "vp of product",
            "director of product", "associate product manager", "apm", "group product manager",
            "gpm", "pm",
        ),
    ),
    CategoryRule(
        Category(3, "Design", "design", "UI/UX design, graphic design, product design, and creative roles"),
        (
            "designer", "ui", "ux", "ui/ux", "graphic design", "web design", "product design",
            "visual design", "interaction design", "figma", "sketch", "adobe", "illustrator",
            "photoshop", "creative",
        ),
    ),
    CategoryRule(
        Category(4, "Marketing", "marketing", "Digital marketing, content marketing, SEO, and growth roles"),
        (
            "marketing", "content", "seo", "sem", "social media", "digital marketing", "growth",
            "brand", "copywriter", "content writer", "marketing manager", "social media manager",
            "email marketing", "demand generation",
        ),
    ),
    CategoryRule(
        Category(5, "Data Science & Analytics", "data-science-analytics",
                 "Data scientists, analysts, machine learning engineers, and BI roles"),
        (
            "data scientist", "data analyst", "machine learning", "ml", "ai",
            "artificial intelligence", "data engineer", "analytics", "business intelligence",
            "bi", "tableau", "power bi", "sql", "data", "statistics", "analyst",
        ),
    ),
    CategoryRule(
        Category(6, "DevOps & Infrastructure", "devops-infrastructure",
                 "DevOps engineers, SRE, cloud architects, and infrastructure roles"),
        (
            "devops", "sre", "site reliability", "infrastructure", "cloud", "aws", "azure", "gcp",
            "kubernetes", "docker", "terraform", "ci/cd", "jenkins", "automation",
            "system administrator", "sysadmin",
        ),
    ),
    CategoryRule(
        Category(7, "Customer Support", "customer-support", "Customer service, technical support, and success roles"),
        (
            "customer support", "customer service", "technical support", "help desk",
            "customer success", "support engineer", "support specialist", "client success",
        ),
    ),
    CategoryRule(
        Category(8, "Sales", "sales", "Sales representatives, account executives, and business development"),
        (
            "sales", "account executive", "bdr", "sdr", "business development",
            "sales representative", "account manager", "sales manager", "inside sales",
        ),
    ),
)

DEFAULT_CATEGORIES: Tuple[Category, ...] = tuple(rule.category for rule in CATEGORY_RULES)


def score_categories(
    title: Optional[str],
    description: Optional[str],
    tags: Iterable[str] = (),
    rules: Sequence[CategoryRule] = CATEGORY_RULES,
) -> List[Tuple[int, int]]:
    """Return ``(category_id, score)`` pairs in declaration order.

    A keyword counts at most once per field: title hits weigh 5, tag hits 3
    and description hits 1.
    """
    title_lower = (title or "").lower()
    description_lower = (description or "").lower()
    tags_lower = [t.lower() for t in tags if t]

    scores: List[Tuple[int, int]] = []
    for rule in rules:
        score = 0
        for keyword in rule.keywords:
            if keyword in title_lower:
                score += TITLE_WEIGHT
            if any(keyword in tag for tag in tags_lower):
                score += TAG_WEIGHT
            if keyword in description_lower:
                score += DESCRIPTION_WEIGHT
        scores.append((rule.category.id, score))
    return scores


def categorize(
    title: Optional[str],
    description: Optional[str],
    tags: Iterable[str] = (),
    rules: Sequence[CategoryRule] = CATEGORY_RULES,
) -> int:
    scores = score_categories(title, description, tags, rules)
    best_id, best_score = DEFAULT_CATEGORY_ID, 0
    for category_id, score in scores:
        # Strictly greater keeps the first-declared category on ties.
        if score > best_score:
            best_id, best_score = category_id, score
    return best_id


def category_names() -> Dict[int, str]:
    return {rule.category.id: rule.category.name for rule in CATEGORY_RULES}


def suggest_category(sample_titles: Iterable[str], departments: Iterable[str] = ()) -> str:
    """Category name for a company, judged from its job titles and departments."""
    titles = list(sample_titles)
    category_id = categorize(" ".join(titles), None, list(departments))
    return category_names()[category_id]

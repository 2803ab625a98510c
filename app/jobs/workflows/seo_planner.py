"""SEO planner workflow: analyze -> research -> score -> suggest.

Pure text analysis of a single post. No external services are called, so the
whole chain is deterministic for a given post body.
"""

import re
from collections import Counter
from typing import Any

from app.jobs.definitions import SeoPlannerPayload
from app.jobs.models import Job, StepResult
from app.jobs.registry import StepContext, default_registry
from app.jobs.types import JobType
from app.services.distribution.message_builder import clean_text
from app.services.posts import PostSource

TITLE_RANGE = (30, 60)
EXCERPT_RANGE = (50, 160)
MIN_WORDS = 300
MIN_HEADINGS = 2
DENSITY_RANGE = (0.5, 2.5)  # percent
MAX_KEYWORDS = 10

STOPWORDS = frozenset(
    """
    about after again also among and another any are because been before being
    between both but can could does doing down during each even every from have
    having here into its just like made make many more most much must never only
    other over same should since some such than that their them then there these
    they this those through under until very was were what when where which while
    will with within without would your you our
    """.split()
)

HEADING_RE = re.compile(r"<h[2-6][^>]*>|^#{2,6}\s", re.IGNORECASE | re.MULTILINE)
LINK_RE = re.compile(r"<a\s[^>]*href=|\[[^\]]+\]\([^)]+\)", re.IGNORECASE)
IMG_RE = re.compile(r"<img\b[^>]*>", re.IGNORECASE)
WORD_RE = re.compile(r"[a-z0-9][a-z0-9'-]*")


def tokenize(text: str) -> list[str]:
    return WORD_RE.findall(text.lower())


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> list[str]:
    """Most frequent non-stopword terms of four or more letters."""
    counts = Counter(
        w for w in tokenize(text) if len(w) >= 4 and w not in STOPWORDS and not w.isdigit()
    )
    return [w for w, _ in counts.most_common(limit)]


def keyword_density(keyword: str, words: list[str]) -> float:
    """Occurrences of a (possibly multi-word) keyword per 100 words."""
    if not words:
        return 0.0
    parts = tokenize(keyword)
    if not parts:
        return 0.0
    n = len(parts)
    hits = sum(1 for i in range(len(words) - n + 1) if words[i : i + n] == parts)
    return round(100.0 * hits / len(words), 3)


def _in_range(value: float, bounds: tuple[float, float]) -> bool:
    return bounds[0] <= value <= bounds[1]


@default_registry.step(JobType.SEO_PLANNER, "analyze")
async def analyze(job: Job, ctx: StepContext) -> StepResult:
    payload: SeoPlannerPayload = ctx.payload
    posts: PostSource = ctx.service("posts")

    post = await posts.get_post(payload.post_id)
    if post is None:
        return StepResult.fail(f"Post {payload.post_id} not found")

    text = clean_text(post.content)
    images = IMG_RE.findall(post.content)
    return StepResult.ok(
        {
            "post_id": post.id,
            "title": post.title,
            "title_length": len(post.title.strip()),
            "excerpt_length": len(clean_text(post.excerpt)),
            "word_count": len(tokenize(text)),
            "headings": len(HEADING_RE.findall(post.content)),
            "links": len(LINK_RE.findall(post.content)),
            "images": len(images),
            "images_missing_alt": sum(1 for tag in images if "alt=" not in tag.lower()),
            "tags": list(post.tags),
        },
        next_step="research",
    )


@default_registry.step(JobType.SEO_PLANNER, "research")
async def research(job: Job, ctx: StepContext) -> StepResult:
    payload: SeoPlannerPayload = ctx.payload
    posts: PostSource = ctx.service("posts")

    post = await posts.get_post(payload.post_id)
    if post is None:
        return StepResult.fail(f"Post {payload.post_id} disappeared")

    words = tokenize(clean_text(post.content))
    title_words = " ".join(tokenize(post.title))
    keywords = [k.strip().lower() for k in payload.target_keywords if k.strip()]
    source = "payload"
    if not keywords:
        keywords = extract_keywords(f"{post.title} {clean_text(post.content)}")
        source = "content"

    findings = [
        {
            "keyword": kw,
            "density": keyword_density(kw, words),
            "in_title": " ".join(tokenize(kw)) in title_words,
        }
        for kw in keywords
    ]
    return StepResult.ok({"keywords": findings, "source": source}, next_step="score")


@default_registry.step(JobType.SEO_PLANNER, "score")
async def score(job: Job, ctx: StepContext) -> StepResult:
    stats = ctx.results["analyze"]
    keywords = ctx.results["research"]["keywords"]
    primary = keywords[0] if keywords else None

    checks = {
        "title_length": _in_range(stats["title_length"], TITLE_RANGE),
        "excerpt_length": _in_range(stats["excerpt_length"], EXCERPT_RANGE),
        "word_count": stats["word_count"] >= MIN_WORDS,
        "headings": stats["headings"] >= MIN_HEADINGS,
        "image_alt": stats["images_missing_alt"] == 0,
        "keyword_in_title": bool(primary and primary["in_title"]),
        "keyword_density": bool(primary and _in_range(primary["density"], DENSITY_RANGE)),
    }
    weights = {
        "title_length": 15,
        "excerpt_length": 15,
        "word_count": 20,
        "headings": 10,
        "image_alt": 5,
        "keyword_in_title": 20,
        "keyword_density": 15,
    }
    total = sum(weights[name] for name, passed in checks.items() if passed)
    return StepResult.ok({"score": total, "checks": checks}, next_step="suggest")


@default_registry.step(JobType.SEO_PLANNER, "suggest")
async def suggest(job: Job, ctx: StepContext) -> StepResult:
    stats = ctx.results["analyze"]
    checks = ctx.results["score"]["checks"]
    keywords = ctx.results["research"]["keywords"]
    primary = keywords[0]["keyword"] if keywords else None

    suggestions: list[dict[str, Any]] = []

    def add(check: str, message: str) -> None:
        suggestions.append({"check": check, "message": message})

    if not checks["title_length"]:
        add(
            "title_length",
            f"Title is {stats['title_length']} characters; aim for "
            f"{TITLE_RANGE[0]}-{TITLE_RANGE[1]}.",
        )
    if not checks["excerpt_length"]:
        add(
            "excerpt_length",
            f"Meta description is {stats['excerpt_length']} characters; aim for "
            f"{EXCERPT_RANGE[0]}-{EXCERPT_RANGE[1]}.",
        )
    if not checks["word_count"]:
        add(
            "word_count",
            f"Only {stats['word_count']} words; expand the post to at least {MIN_WORDS}.",
        )
    if not checks["headings"]:
        add("headings", "Break the content up with at least two subheadings.")
    if not checks["image_alt"]:
        add(
            "image_alt",
            f"{stats['images_missing_alt']} image(s) have no alt text.",
        )
    if primary is None:
        add("keyword_in_title", "No keywords found; add target keywords to the payload.")
    else:
        if not checks["keyword_in_title"]:
            add("keyword_in_title", f"Use '{primary}' in the title.")
        if not checks["keyword_density"]:
            add(
                "keyword_density",
                f"Keep '{primary}' density between {DENSITY_RANGE[0]}% and "
                f"{DENSITY_RANGE[1]}%.",
            )
    if stats["links"] == 0:
        add("links", "Add at least one internal or external link.")

    return StepResult.ok(
        {"score": ctx.results["score"]["score"], "suggestions": suggestions}
    )

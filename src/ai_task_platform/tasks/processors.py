"""Built-in processors for SEO, content and advertising tasks."""

from __future__ import annotations

import json
import math
import re
from typing import TYPE_CHECKING, Any

from ai_task_platform.api.dataforseo_service import DataForSEOService
from ai_task_platform.api.openai_service import OpenAIService
from ai_task_platform.api.service import ApiService, ServiceName
from ai_task_platform.errors import ProcessingError
from ai_task_platform.tasks.models import BuiltinTaskType, TaskLogLevel, TaskView
from ai_task_platform.tasks.processor import BaseTaskProcessor

if TYPE_CHECKING:
    from ai_task_platform.api.manager import ApiManager
    from ai_task_platform.tasks.engine import TaskEngine

CONTENT_TYPES = ("blog_post", "product_description", "landing_page", "email", "social_media")
TONE_TEMPERATURES = {
    "professional": 0.5,
    "conversational": 0.7,
    "casual": 0.8,
    "humorous": 0.9,
    "formal": 0.4,
    "technical": 0.3,
}
CONTENT_TYPE_GUIDANCE = {
    "blog_post": (
        "The blog post should include an introduction, several body sections with "
        "subheadings, and a conclusion. "
    ),
    "product_description": (
        "The product description should highlight benefits, features, and include a "
        "call-to-action. "
    ),
    "landing_page": (
        "The landing page content should be persuasive, addressing pain points and "
        "highlighting solutions with a strong call-to-action. "
    ),
    "email": (
        "The email should have a compelling subject line, personalized greeting, valuable "
        "body content, and a clear call-to-action. "
    ),
    "social_media": (
        "The social media post should be engaging, concise, and include relevant hashtags. "
    ),
}
MIN_WORD_COUNT = 100
MAX_WORD_COUNT = 3000
MAX_COMPLETION_TOKENS = 4000
WORDS_PER_MINUTE = 225

HIGH_VOLUME_THRESHOLD = 1000
LOW_COMPETITION_THRESHOLD = 0.3
HIGH_CPC_THRESHOLD = 1.0

SEVERITY_WEIGHTS = {"critical": 10, "high": 5, "medium": 2, "low": 1}
# page check name -> (value that signals the issue, severity, title, recommendation)
AUDIT_CHECKS: dict[str, tuple[bool, str, str, str]] = {
    "is_https": (
        False,
        "critical",
        "Missing SSL Certificate",
        "Install an SSL certificate and migrate your website to HTTPS.",
    ),
    "high_loading_time": (
        True,
        "high",
        "Slow Page Load Speed",
        "Optimize images, leverage browser caching, minify CSS/JS, and consider a CDN.",
    ),
    "no_description": (
        True,
        "high",
        "Missing Meta Descriptions",
        "Add unique, descriptive meta descriptions to all pages (150-160 characters).",
    ),
    "duplicate_content": (
        True,
        "medium",
        "Duplicate Content Issues",
        "Implement canonical tags or consolidate similar content into single pages.",
    ),
    "low_content_rate": (
        True,
        "medium",
        "Low Word Count",
        "Expand thin content with valuable information that helps users.",
    ),
    "no_image_alt": (
        True,
        "low",
        "Missing Alt Text for Images",
        "Add descriptive alt text to all images.",
    ),
}

AD_PLATFORM_LIMITS = {"google": (30, 90), "facebook": (40, 125), "bing": (30, 90)}
MAX_AD_VARIATIONS = 10


def task_results(data: Any) -> list[Any]:
    """`tasks[0].result` of a DataForSEO envelope, or an empty list."""

    if not isinstance(data, dict):
        return []
    tasks = data.get("tasks")
    if not isinstance(tasks, list) or not tasks or not isinstance(tasks[0], dict):
        return []
    result = tasks[0].get("result")
    return result if isinstance(result, list) else []


def _message_content(data: Any) -> str | None:
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return None
    return content if isinstance(content, str) else None


class _DataForSEOProcessor(BaseTaskProcessor):
    def dataforseo(self, task: TaskView) -> DataForSEOService:
        service = self.get_api_service(ServiceName.DATAFORSEO, task)
        if not isinstance(service, DataForSEOService):
            raise ProcessingError("DataForSEO API service is not available.")
        _require_configured(service)
        return service


class _OpenAIProcessor(BaseTaskProcessor):
    def openai(self, task: TaskView) -> OpenAIService:
        service = self.get_api_service(ServiceName.OPENAI, task)
        if not isinstance(service, OpenAIService):
            raise ProcessingError("OpenAI API service is not available.")
        _require_configured(service)
        return service

    def chat(
        self,
        service: OpenAIService,
        *,
        system: str,
        prompt: str,
        model: str,
        max_tokens: int,
        temperature: float = 0.7,
    ) -> tuple[str | None, Any]:
        response = service.create_chat_completion(
            {
                "model": model,
                "messages": [
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                "max_tokens": max_tokens,
                "temperature": temperature,
            },
        )
        data = self.unwrap(response, context="OpenAI API error")
        return _message_content(data), data


def _require_configured(service: ApiService) -> None:
    if service.is_sandbox_mode() or service.is_configured():
        return
    raise ProcessingError(
        f"{service.service_name.value} API credentials are not configured.",
        code="api_credentials_missing",
    )


class KeywordResearchProcessor(_DataForSEOProcessor):
    """Expands a seed keyword into related keywords with volume, CPC and competition."""

    task_type = BuiltinTaskType.KEYWORD_RESEARCH.value

    def validate_inputs(self, inputs: dict[str, Any]) -> None:
        if not str(inputs.get("seed_keyword") or "").strip():
            raise ProcessingError("Seed keyword is required.", code="missing_seed_keyword")

    def process(self, task: TaskView) -> dict[str, Any]:
        self.log(task.task_id, "Starting keyword research task...")
        self.validate_inputs(task.inputs)
        service = self.dataforseo(task)

        seed_keyword = str(task.get_input("seed_keyword")).strip()
        self.log(task.task_id, f"Fetching keyword data for: {seed_keyword}")
        response = service.keyword_suggestions(
            seed_keyword,
            location_code=int(task.get_input("location", 2840)),
            language_code=str(task.get_input("language", "en")),
            limit=int(task.get_input("limit", 100)),
        )
        data = self.unwrap(response, context="DataForSEO API error")

        keywords: list[dict[str, Any]] = []
        for item in task_results(data):
            keyword_data = item.get("keyword_data") if isinstance(item, dict) else None
            if not isinstance(keyword_data, dict) or not keyword_data.get("keyword"):
                continue
            keywords.append(
                {
                    "keyword": keyword_data["keyword"],
                    "search_volume": keyword_data.get("search_volume") or 0,
                    "cpc": keyword_data.get("cpc") or 0,
                    "competition": keyword_data.get("competition") or 0,
                },
            )
        keywords.sort(key=lambda entry: entry["search_volume"], reverse=True)

        count = len(keywords)
        stats = {
            "total_keywords": count,
            "average_volume": sum(k["search_volume"] for k in keywords) / count if count else 0,
            "average_cpc": sum(k["cpc"] for k in keywords) / count if count else 0,
            "average_competition": (
                sum(k["competition"] for k in keywords) / count if count else 0
            ),
        }
        suggestions = {
            "high_volume": [
                k["keyword"] for k in keywords if k["search_volume"] > HIGH_VOLUME_THRESHOLD
            ],
            "low_competition": [
                k["keyword"] for k in keywords if k["competition"] < LOW_COMPETITION_THRESHOLD
            ],
            "high_cpc": [k["keyword"] for k in keywords if k["cpc"] > HIGH_CPC_THRESHOLD],
        }
        self.log(task.task_id, f"Keyword research complete. Found {count} keywords.")
        return self.format_outputs(
            {
                "seed_keyword": seed_keyword,
                "keywords": keywords,
                "stats": stats,
                "suggestions": suggestions,
            },
        )


class ContentGenerationProcessor(_OpenAIProcessor):
    """Writes Markdown content, then derives a title and meta description."""

    task_type = BuiltinTaskType.CONTENT_GENERATION.value

    def validate_inputs(self, inputs: dict[str, Any]) -> None:
        if not str(inputs.get("topic") or "").strip():
            raise ProcessingError(
                "Topic is required for content generation.",
                code="missing_topic",
            )
        if "content_type" in inputs and inputs["content_type"] not in CONTENT_TYPES:
            raise ProcessingError("Invalid content type.", code="invalid_content_type")
        if "tone" in inputs and inputs["tone"] not in TONE_TEMPERATURES:
            raise ProcessingError("Invalid tone.", code="invalid_tone")
        if "word_count" in inputs:
            try:
                word_count = int(inputs["word_count"])
            except (TypeError, ValueError):
                word_count = 0
            if not MIN_WORD_COUNT <= word_count <= MAX_WORD_COUNT:
                raise ProcessingError(
                    f"Word count must be between {MIN_WORD_COUNT} and {MAX_WORD_COUNT}.",
                    code="invalid_word_count",
                )

    def process(self, task: TaskView) -> dict[str, Any]:
        self.log(task.task_id, "Starting content generation task...")
        self.validate_inputs(task.inputs)
        service = self.openai(task)

        content_type = str(task.get_input("content_type", "blog_post"))
        topic = str(task.get_input("topic")).strip()
        keywords = self.input_list(task.get_input("keywords"))
        tone = str(task.get_input("tone", "professional"))
        word_count = int(task.get_input("word_count", 800))
        model = str(
            task.get_input("model") or self.api_manager.settings.openai_default_model,
        )

        prompt = build_content_prompt(
            content_type=content_type,
            topic=topic,
            keywords=keywords,
            tone=tone,
            outline=str(task.get_input("outline") or ""),
            word_count=word_count,
        )
        self.log(task.task_id, f"Making OpenAI request for {content_type} about {topic}")
        content, data = self.chat(
            service,
            system=(
                f"You are an expert content creator specializing in {content_type} writing "
                f"with a {tone} tone. Create high-quality, engaging content that incorporates "
                "the keywords provided naturally."
            ),
            prompt=prompt,
            model=model,
            max_tokens=min(MAX_COMPLETION_TOKENS, int(word_count * 1.3 * 1.2)),
            temperature=TONE_TEMPERATURES.get(tone, 0.7),
        )
        if content is None:
            raise ProcessingError("Invalid response from OpenAI API.", code="invalid_response")

        title = extract_markdown_title(content)
        if not title:
            self.log(task.task_id, "Generating title for content")
            title = self._follow_up(
                task,
                service,
                system=f"You are an expert at creating engaging titles for {content_type} content.",
                prompt=(
                    "Generate a compelling title for the following content that includes some "
                    f"of these keywords if possible: {', '.join(keywords)}.\n\n"
                    f"Content:\n{content[:500]}..."
                ),
                model=model,
                max_tokens=50,
            )

        self.log(task.task_id, "Generating meta description")
        meta_description = self._follow_up(
            task,
            service,
            system=(
                "You are an SEO expert specializing in meta descriptions. Create compelling "
                "descriptions that encourage clicks while incorporating keywords naturally."
            ),
            prompt=(
                "Generate a compelling meta description (about 150-160 characters) for SEO "
                "purposes for the following content. Include primary keywords if possible:"
                f"\n\nTitle: {title}\n\nContent:\n{content[:500]}..."
            ),
            model=model,
            max_tokens=100,
        )

        words = count_words(content)
        self.log(task.task_id, f"Content generation complete. Generated {words} words.")
        return self.format_outputs(
            {
                "content": content,
                "title": title,
                "meta_description": meta_description,
                "model": data.get("model", model) if isinstance(data, dict) else model,
                "usage": data.get("usage") if isinstance(data, dict) else None,
                "stats": {
                    "word_count": words,
                    "character_count": len(content),
                    "reading_time": math.ceil(words / WORDS_PER_MINUTE),
                },
            },
        )

    def _follow_up(  # noqa: PLR0913
        self,
        task: TaskView,
        service: OpenAIService,
        *,
        system: str,
        prompt: str,
        model: str,
        max_tokens: int,
    ) -> str:
        try:
            text, _ = self.chat(
                service,
                system=system,
                prompt=prompt,
                model=model,
                max_tokens=max_tokens,
            )
        except ProcessingError as error:
            self.log(task.task_id, error.message, TaskLogLevel.WARNING)
            return ""
        return (text or "").strip().strip("\"'")


def build_content_prompt(  # noqa: PLR0913
    *,
    content_type: str,
    topic: str,
    keywords: list[str],
    tone: str,
    outline: str,
    word_count: int,
) -> str:
    prompt = f"Create a {tone}-toned {content_type} about {topic}. "
    if keywords:
        prompt += (
            f"Include the following keywords naturally throughout the content: "
            f"{', '.join(keywords)}. "
        )
    if outline:
        prompt += f"Follow this outline:\n\n{outline}\n\n"
    else:
        prompt += CONTENT_TYPE_GUIDANCE.get(content_type, "")
    prompt += f"The content should be approximately {word_count} words. "
    prompt += (
        "Format the content using Markdown, with a title, headings, and appropriate "
        "formatting for readability. Include internal links where relevant."
    )
    return prompt


def extract_markdown_title(content: str) -> str:
    match = re.search(r"^#\s+(.+?)\s*$", content, flags=re.MULTILINE)
    return match.group(1) if match else ""


def count_words(text: str) -> int:
    return len(re.findall(r"[A-Za-z'-]+", text))


class SeoAuditProcessor(_DataForSEOProcessor):
    """Starts an on-page crawl and grades the pages it returns."""

    task_type = BuiltinTaskType.SEO_AUDIT.value

    def validate_inputs(self, inputs: dict[str, Any]) -> None:
        domain = str(inputs.get("domain") or "").strip()
        if not domain:
            raise ProcessingError("Domain is required for SEO audit.", code="missing_domain")
        if "." not in domain:
            raise ProcessingError("Invalid domain format.", code="invalid_domain")
        if "max_pages" in inputs:
            try:
                max_pages = int(inputs["max_pages"])
            except (TypeError, ValueError):
                max_pages = 0
            if not 1 <= max_pages <= 1000:
                raise ProcessingError(
                    "max_pages must be between 1 and 1000.",
                    code="invalid_max_pages",
                )

    def process(self, task: TaskView) -> dict[str, Any]:
        self.log(task.task_id, "Starting SEO audit task...")
        self.validate_inputs(task.inputs)
        service = self.dataforseo(task)

        domain = normalize_domain(str(task.get_input("domain")))
        max_pages = int(task.get_input("max_pages", 100))
        self.log(task.task_id, f"Starting SEO audit for domain: {domain}")

        data = self.unwrap(
            service.site_audit(domain, max_crawl_pages=max_pages),
            context="DataForSEO API error",
        )
        tasks = data.get("tasks") if isinstance(data, dict) else None
        audit_task_id = tasks[0].get("id") if tasks and isinstance(tasks[0], dict) else None
        if not audit_task_id:
            raise ProcessingError(
                "Failed to create DataForSEO audit task.",
                code="task_creation_failed",
            )
        self.log(task.task_id, f"DataForSEO audit task created with ID: {audit_task_id}")

        pages_response = service.on_page_pages(str(audit_task_id), limit=max_pages)
        pages: list[dict[str, Any]] = []
        if pages_response.success:
            for result in task_results(pages_response.data):
                items = result.get("items") if isinstance(result, dict) else None
                pages.extend(item for item in items or [] if isinstance(item, dict))
        else:
            reason = pages_response.error.message if pages_response.error else "unknown error"
            self.log(
                task.task_id,
                f"Could not fetch audit pages: {reason}",
                TaskLogLevel.WARNING,
            )

        issues = grade_pages(pages)
        recommendations = [
            {"title": issue["title"], "recommendation": issue["recommendation"], "severity": sev}
            for sev, severity_issues in issues.items()
            for issue in severity_issues
        ]
        issues_found = sum(len(severity_issues) for severity_issues in issues.values())
        score = audit_score(issues)
        summary = (
            f"SEO audit for {domain} analyzed {len(pages)} pages and found "
            f"{issues_found} issue types. Overall score: {score}/100."
        )
        self.log(task.task_id, summary)
        return self.format_outputs(
            {
                "domain": domain,
                "audit_task_id": audit_task_id,
                "crawl_complete": bool(pages),
                "summary": summary,
                "issues": issues,
                "recommendations": recommendations,
                "stats": {
                    "pages_analyzed": len(pages),
                    "issues_found": issues_found,
                    "score": score,
                },
            },
        )


def normalize_domain(value: str) -> str:
    domain = re.sub(r"^https?://", "", value.strip(), flags=re.IGNORECASE)
    return domain.split("/", 1)[0].lower()


def grade_pages(pages: list[dict[str, Any]]) -> dict[str, list[dict[str, Any]]]:
    """Group failing page checks into issues keyed by severity."""

    issues: dict[str, list[dict[str, Any]]] = {severity: [] for severity in SEVERITY_WEIGHTS}
    for check, (bad_value, severity, title, recommendation) in AUDIT_CHECKS.items():
        affected = [
            str(page.get("url", ""))
            for page in pages
            if isinstance(page.get("checks"), dict) and page["checks"].get(check) is bad_value
        ]
        if not affected:
            continue
        issues[severity].append(
            {
                "check": check,
                "title": title,
                "description": f"{len(affected)} of {len(pages)} pages affected.",
                "recommendation": recommendation,
                "pages": affected,
            },
        )
    return issues


def audit_score(issues: dict[str, list[dict[str, Any]]]) -> int:
    deduction = sum(SEVERITY_WEIGHTS[severity] * len(found) for severity, found in issues.items())
    return max(0, 100 - deduction)


class BacklinkAnalysisProcessor(_DataForSEOProcessor):
    task_type = BuiltinTaskType.BACKLINK_ANALYSIS.value

    def validate_inputs(self, inputs: dict[str, Any]) -> None:
        self.require_inputs(inputs, "domain")

    def process(self, task: TaskView) -> dict[str, Any]:
        self.log(task.task_id, "Starting backlink analysis task...")
        self.validate_inputs(task.inputs)
        service = self.dataforseo(task)

        domain = normalize_domain(str(task.get_input("domain")))
        data = self.unwrap(service.backlinks_summary(domain), context="DataForSEO API error")
        results = task_results(data)
        summary = results[0] if results and isinstance(results[0], dict) else {}

        top_backlinks: list[dict[str, Any]] = []
        limit = int(task.get_input("limit", 0) or 0)
        if limit > 0:
            listing = self.unwrap(
                service.backlinks(domain, limit=limit),
                context="DataForSEO API error",
            )
            rows = task_results(listing)
            items = rows[0].get("items") if rows and isinstance(rows[0], dict) else None
            top_backlinks = [
                {
                    "url_from": item.get("url_from"),
                    "anchor": item.get("anchor"),
                    "rank": item.get("rank", 0),
                    "dofollow": bool(item.get("dofollow")),
                }
                for item in items or []
                if isinstance(item, dict)
            ]
            top_backlinks.sort(key=lambda entry: entry["rank"] or 0, reverse=True)

        self.log(
            task.task_id,
            f"Backlink analysis complete: {summary.get('backlinks', 0)} backlinks "
            f"from {summary.get('referring_domains', 0)} referring domains.",
        )
        return self.format_outputs(
            {
                "domain": domain,
                "summary": {
                    key: summary.get(key, 0)
                    for key in (
                        "rank",
                        "backlinks",
                        "referring_domains",
                        "referring_main_domains",
                        "referring_ips",
                        "broken_backlinks",
                    )
                },
                "top_backlinks": top_backlinks,
            },
        )


class AdCopyProcessor(_OpenAIProcessor):
    task_type = BuiltinTaskType.AD_COPY.value

    def validate_inputs(self, inputs: dict[str, Any]) -> None:
        self.require_inputs(inputs, "product")
        platform = inputs.get("platform", "google")
        if platform not in AD_PLATFORM_LIMITS:
            raise ProcessingError("Invalid ad platform.", code="invalid_platform")
        try:
            variations = int(inputs.get("variations", 3))
        except (TypeError, ValueError):
            variations = 0
        if not 1 <= variations <= MAX_AD_VARIATIONS:
            raise ProcessingError(
                f"variations must be between 1 and {MAX_AD_VARIATIONS}.",
                code="invalid_variations",
            )

    def process(self, task: TaskView) -> dict[str, Any]:
        self.log(task.task_id, "Starting ad copy generation task...")
        self.validate_inputs(task.inputs)
        service = self.openai(task)

        product = str(task.get_input("product")).strip()
        platform = str(task.get_input("platform", "google"))
        variations = int(task.get_input("variations", 3))
        keywords = self.input_list(task.get_input("keywords"))
        audience = str(task.get_input("audience") or "")
        headline_limit, description_limit = AD_PLATFORM_LIMITS[platform]

        prompt = (
            f"Write {variations} headlines (max {headline_limit} characters each) and "
            f"{variations} descriptions (max {description_limit} characters each) for a "
            f"{platform} ad promoting: {product}. "
        )
        if audience:
            prompt += f"Target audience: {audience}. "
        if keywords:
            prompt += f"Use these keywords where natural: {', '.join(keywords)}. "
        prompt += 'Reply with JSON only: {"headlines": [...], "descriptions": [...]}.'

        content, data = self.chat(
            service,
            system="You are an expert PPC copywriter.",
            prompt=prompt,
            model=str(task.get_input("model") or self.api_manager.settings.openai_default_model),
            max_tokens=400,
        )
        if content is None:
            raise ProcessingError("Invalid response from OpenAI API.", code="invalid_response")

        headlines, descriptions = parse_ad_copy(content)
        if not headlines and not descriptions:
            self.log(
                task.task_id,
                "Ad copy response was not structured; keeping raw text only.",
                TaskLogLevel.WARNING,
            )
        self.log(
            task.task_id,
            f"Ad copy complete: {len(headlines)} headlines, {len(descriptions)} descriptions.",
        )
        return self.format_outputs(
            {
                "product": product,
                "platform": platform,
                "headlines": [h[:headline_limit] for h in headlines[:variations]],
                "descriptions": [d[:description_limit] for d in descriptions[:variations]],
                "raw_content": content,
                "usage": data.get("usage") if isinstance(data, dict) else None,
            },
        )


def parse_ad_copy(content: str) -> tuple[list[str], list[str]]:
    """Read headlines/descriptions from a JSON reply or `Headline:` style lines."""

    match = re.search(r"\{.*\}", content, flags=re.DOTALL)
    if match:
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError:
            payload = None
        if isinstance(payload, dict):
            return (
                [str(item).strip() for item in payload.get("headlines") or []],
                [str(item).strip() for item in payload.get("descriptions") or []],
            )

    headlines: list[str] = []
    descriptions: list[str] = []
    for line in content.splitlines():
        label, _, value = line.partition(":")
        name = label.strip().lstrip("-*0123456789. ").lower()
        if not value.strip():
            continue
        if name.startswith("headline"):
            headlines.append(value.strip())
        elif name.startswith("description"):
            descriptions.append(value.strip())
    return headlines, descriptions


def builtin_processors(
    api_manager: ApiManager,
    engine: TaskEngine,
) -> list[BaseTaskProcessor]:
    return [
        processor_cls(api_manager, log_sink=engine.log_task)
        for processor_cls in (
            KeywordResearchProcessor,
            ContentGenerationProcessor,
            SeoAuditProcessor,
            BacklinkAnalysisProcessor,
            AdCopyProcessor,
        )
    ]


def register_builtin_processors(engine: TaskEngine, api_manager: ApiManager) -> None:
    for processor in builtin_processors(api_manager, engine):
        engine.register_task_processor(processor.get_task_type(), processor)

"""
Summarization service using LLMs (Claude or GPT).
Generates article summaries and one-line dashboard hooks at ingestion time.
"""
import logging
import re
from typing import Optional

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from feedwatch.config import Settings, get_settings
from feedwatch.services.data_ingestion.cleaning import truncate

logger = logging.getLogger(__name__)

NO_CONTENT_MARKER = "NO FACTUAL CONTENT"
MAX_SUMMARY_CHARS = 300
MAX_HOOK_CHARS = 160

# Stripped before the sentence-based fallback
FALLBACK_NOISE_PATTERNS = [
    re.compile(r"Category:\s*[\w\s,]+\s+\w{3}\s+\d{1,2},\s*\d{4}", re.IGNORECASE),
    re.compile(r"Category:\s*[\w\s,]+", re.IGNORECASE),
    re.compile(r"\w{3}\s+\d{1,2},\s*\d{4}"),
    re.compile(r"By\s+[\w\s]+,\s*\w{3}\s+\d{1,2},\s*\d{4}", re.IGNORECASE),
    re.compile(r"Author:\s*[\w\s]+", re.IGNORECASE),
    re.compile(r"Tags?:\s*[\w\s,]+", re.IGNORECASE),
    re.compile(r"Read more\s*→?", re.IGNORECASE),
    re.compile(r"Continue reading\s*→?", re.IGNORECASE),
    re.compile(r"View all articles", re.IGNORECASE),
    re.compile(r"Related Articles", re.IGNORECASE),
]

SYSTEM_PROMPT = (
    "You are a fact-checker and news summarizer for journalists. "
    "Only include information directly stated in the source. Preserve quotes, "
    "names, dates and numbers exactly. Never add interpretation or outside context. "
    f'If there is no substantial factual content, respond with "{NO_CONTENT_MARKER}".'
)


def _meaningful_sentences(content: str) -> list[str]:
    cleaned = content
    for pattern in FALLBACK_NOISE_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    sentences = []
    for sentence in re.split(r"[.!?]+", cleaned):
        sentence = sentence.strip()
        if len(sentence) <= 20:
            continue
        if re.match(r"^[A-Z][a-z]+:\s", sentence) or re.match(r"^\d{4}-\d{2}-\d{2}", sentence):
            continue
        sentences.append(sentence)
    return sentences


class SummarizationService:
    """
    Service for generating article summaries and hooks using LLMs.

    Anthropic is preferred; OpenAI is used when only its key is set.
    Without either, or when a call fails, a deterministic extractive
    summary is returned instead.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        anthropic_client: Optional[AsyncAnthropic] = None,
        openai_client: Optional[AsyncOpenAI] = None,
    ):
        self.settings = settings or get_settings()
        self._anthropic_client = anthropic_client
        self._openai_client = openai_client
        if self._anthropic_client is None and self._openai_client is None:
            if self.settings.anthropic_api_key:
                self._anthropic_client = AsyncAnthropic(api_key=self.settings.anthropic_api_key)
            elif self.settings.openai_api_key:
                self._openai_client = AsyncOpenAI(api_key=self.settings.openai_api_key)

    @property
    def has_llm(self) -> bool:
        return self._anthropic_client is not None or self._openai_client is not None

    async def summarize(self, title: str, content: str, source_name: str) -> str:
        """
        Generate a concise factual summary for an article.

        Args:
            title: Article title
            content: Cleaned article body
            source_name: Publisher name, used in the prompt

        Returns:
            Summary text (never empty when content is non-empty)
        """
        if not self.has_llm:
            return self._summarize_fallback(content)

        prompt = self._build_summary_prompt(title, content, source_name)
        try:
            summary = await self._complete(prompt, max_tokens=200, system=SYSTEM_PROMPT)
        except Exception as e:
            logger.warning(f"LLM summarization failed for '{title[:60]}': {e}")
            return self._summarize_fallback(content)

        if not summary or summary == NO_CONTENT_MARKER:
            return self._summarize_fallback(content)
        return summary

    async def generate_hook(self, title: str, content: str, source_name: str) -> str:
        """One short sentence telling a reader why the article might matter to them."""
        if not self.has_llm:
            return self._hook_fallback(title, content)

        prompt = f"""Source: {source_name}
Title: {title}

Content:
{content[:1500]}

Write ONE sentence (under 25 words) that tells a journalist what this article is about
and why they might care. Use only facts stated above. Do not repeat the title.

Hook:"""
        hook = await self._complete(prompt, max_tokens=80)
        return truncate(hook.strip().strip('"'), MAX_HOOK_CHARS) or self._hook_fallback(title, content)

    async def _complete(self, prompt: str, max_tokens: int, system: Optional[str] = None) -> str:
        if self._anthropic_client is not None:
            kwargs = {"system": system} if system else {}
            response = await self._anthropic_client.messages.create(
                model=self.settings.anthropic_model,
                max_tokens=max_tokens,
                messages=[{"role": "user", "content": prompt}],
                **kwargs,
            )
            return response.content[0].text.strip()

        messages = [{"role": "user", "content": prompt}]
        if system:
            messages.insert(0, {"role": "system", "content": system})
        response = await self._openai_client.chat.completions.create(
            model=self.settings.openai_model,
            max_tokens=max_tokens,
            temperature=0.1,
            messages=messages,
        )
        return (response.choices[0].message.content or "").strip()

    def _build_summary_prompt(self, title: str, content: str, source_name: str) -> str:
        """Build the summarization prompt."""
        stripped = (content or "").strip()
        if len(stripped) < 50 or re.fullmatch(r"https?://\S+", stripped):
            return f"""Source: {source_name}
Title: {title}
Link: {stripped or 'No content available'}

This is a link-only or minimal article. Write a brief summary based on the title
that would be useful to a journalist. Keep it under 50 words."""

        return f"""Source: {source_name}
Title: {title}

Article content to summarize:
{stripped}

Instructions:
1. Summarize the key facts of this {source_name} article in under 150 words
2. Focus on the main news, announcement or development
3. Keep numbers, dates, names and quotes exactly as stated
4. Do not repeat the title
5. Ignore navigation text, metadata and promotional content"""

    def _summarize_fallback(self, content: str) -> str:
        """
        Fallback summarization without LLM.
        Uses the first three meaningful sentences.
        """
        if not content or len(content) < 100:
            return content or ""

        summary = ". ".join(_meaningful_sentences(content)[:3]).strip()
        if not summary:
            return truncate(content, MAX_SUMMARY_CHARS)
        if len(summary) > MAX_SUMMARY_CHARS:
            return truncate(summary, MAX_SUMMARY_CHARS)
        return summary + "."

    def _hook_fallback(self, title: str, content: str) -> str:
        sentences = _meaningful_sentences(content or "")
        if sentences:
            return truncate(sentences[0] + ".", MAX_HOOK_CHARS)
        return truncate(title, MAX_HOOK_CHARS)

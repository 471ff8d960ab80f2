"""Prompt assembly from retrieved passages."""
from typing import Dict, Sequence

from models.passage import Passage
from config import PROMPT_TEMPLATE_VERSION

# Versioned prompt templates. The wording is part of the contract with the
# generation backend: add a new version rather than editing an existing one.
PROMPT_TEMPLATES: Dict[str, str] = {
    "news-v1": (
        "You are a news assistant trained to give direct answers to questions "
        "using the following context. Answer the query without redirecting the "
        "user, dont mention authors, dont add any promotional content. Your "
        "response should be concise but informative, answering the user's "
        "question as directly as possible. Ensure the response is clear, "
        "relevant, and at least 3 lines long on a mobile screen. You can use the "
        "provided passages below as context if context doesnt answer the user "
        "query use your own knowledge.\n"
        "\n"
        "Context:\n"
        "{context}\n"
        "\n"
        "Question: {query}"
    ),
}


def build_context(passages: Sequence[Passage]) -> str:
    """Join passage texts in retrieval order, separated by a blank line."""
    return "\n\n".join(passage.text for passage in passages)


def assemble(
    query: str,
    passages: Sequence[Passage],
    version: str = PROMPT_TEMPLATE_VERSION
) -> str:
    """
    Build the generation prompt.

    Args:
        query: User question
        passages: Retrieved passages, most relevant first
        version: Key into PROMPT_TEMPLATES

    Returns:
        Complete prompt string

    Raises:
        ValueError: If the template version is unknown
    """
    try:
        template = PROMPT_TEMPLATES[version]
    except KeyError:
        raise ValueError(f"Unknown prompt template version: {version!r}") from None

    return template.format(context=build_context(passages), query=query)

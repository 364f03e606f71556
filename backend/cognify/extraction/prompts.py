"""Prompt templates sent to the language model."""
from __future__ import annotations

from typing import Dict, List

TRIPLE_EXTRACTION_SYSTEM_PROMPT = (
    "You are a knowledge graph extraction engine. Follow prompt version {prompt_version}.\n"
    "Read the user's text and extract factual relationships between named entities as "
    "subject-predicate-object triples.\n"
    "Rules:\n"
    "- Subjects and objects are concise entity names (people, places, organisations, "
    "concepts, works, events) taken from the text.\n"
    "- Use the same spelling every time an entity is mentioned so repeated mentions merge.\n"
    "- Predicates are short verb phrases of at most three words, such as \"influenced\", "
    "\"founded\", \"is part of\".\n"
    "- The subject and object must be different entities; never relate an entity to itself.\n"
    "- Do not invent facts that the text does not state or clearly imply.\n"
    "- Output the most important relationships first.\n"
    "Respond with a JSON object of the form "
    "{{\"triples\": [{{\"subject\": \"...\", \"predicate\": \"...\", \"object\": \"...\"}}]}} "
    "and nothing else."
)

TRIPLE_EXTRACTION_USER_TEMPLATE = (
    "Extract knowledge graph triples from the following text.\n"
    "Text:\n"
    "\"\"\"\n{text}\n\"\"\"\n"
    "Return JSON only."
)

TOPIC_SYSTEM_PROMPT = (
    "You are an expert educator. Write clear, factual overviews that name the key people, "
    "places, organisations, concepts and events of a subject and state how they relate."
)

TOPIC_USER_TEMPLATE = (
    "Write an educational overview of the topic \"{topic}\" in several paragraphs of plain "
    "prose. Mention specific named entities and the relationships between them. Do not use "
    "headings, lists or Markdown."
)


def build_extraction_messages(text: str, prompt_version: str) -> List[Dict[str, str]]:
    """Return the chat messages requesting triples for ``text``."""

    return [
        {
            "role": "system",
            "content": TRIPLE_EXTRACTION_SYSTEM_PROMPT.format(prompt_version=prompt_version),
        },
        {"role": "user", "content": TRIPLE_EXTRACTION_USER_TEMPLATE.format(text=text)},
    ]


def build_topic_messages(topic: str) -> List[Dict[str, str]]:
    """Return the chat messages requesting an overview of ``topic``."""

    return [
        {"role": "system", "content": TOPIC_SYSTEM_PROMPT},
        {"role": "user", "content": TOPIC_USER_TEMPLATE.format(topic=topic)},
    ]


__all__ = [
    "TOPIC_SYSTEM_PROMPT",
    "TRIPLE_EXTRACTION_SYSTEM_PROMPT",
    "build_extraction_messages",
    "build_topic_messages",
]

"""Relevance gate prompts."""

RELEVANCE_SYSTEM_PROMPT = """You are a relevance filter for tech news stories.
Decide whether a story strongly matches the user's interests.
You MUST NOT assign numeric scores.
You MUST NOT rank or compare stories.
User interests: {interests}"""

RELEVANCE_PROMPT = """Title: {title}
Score: {score}
Rank: {rank}
Content signals:
- Page Title: {page_title}
- Description: {description}
- Headings: {headings}
- First Paragraphs: {paragraphs}
- Has Code Blocks: {has_code_blocks}
- Body Snippet: {body_snippet}

Respond in JSON:
{{"relevant": true or false, "reason": "one sentence on why it matches, empty if not relevant"}}"""

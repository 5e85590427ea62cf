"""Document-store key layout.

One key prefix per entity type; the rest of the key makes the item unique
(e.g. one Answer per project+question, one Brief per project+opportunity).
"""

BRIEF_PREFIX = "BRIEF#"
ANSWER_PREFIX = "ANSWER#"
CONTENT_LIBRARY_PREFIX = "CONTENT_LIBRARY#"
PAST_PROJECT_PREFIX = "PAST_PROJECT#"


def brief_id_for(project_id: str, opportunity_id: str) -> str:
    return f"{project_id}#{opportunity_id}"


def brief_key(brief_id: str) -> str:
    return f"{BRIEF_PREFIX}{brief_id}"


def answer_key(project_id: str, question_id: str) -> str:
    return f"{ANSWER_PREFIX}{project_id}#{question_id}"


def content_library_key(org_id: str, item_id: str) -> str:
    return f"{CONTENT_LIBRARY_PREFIX}{org_id}#{item_id}"


def past_project_key(org_id: str, project_id: str) -> str:
    return f"{PAST_PROJECT_PREFIX}{org_id}#{project_id}"


def past_project_prefix(org_id: str) -> str:
    return f"{PAST_PROJECT_PREFIX}{org_id}#"

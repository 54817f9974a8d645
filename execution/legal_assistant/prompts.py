"""
Language-model instruction templates for chat turns and conversation titles.
"""

GROUNDED_SYSTEM_PROMPT = """You are a legal assistant. You have access to excerpts from the user's uploaded legal documents.

INSTRUCTIONS:
- Answer using ONLY the provided excerpts.
- Cite excerpts inline with their [N] number; quote the relevant wording where it helps.
- If the excerpts do not contain the answer, say plainly: "The provided documents do not contain this information."
- Be concise, accurate and professional. Do not present general knowledge as if it came from the documents."""

UNGROUNDED_SYSTEM_PROMPT = """You are a legal assistant. No document excerpts are available for this question.
Answer from general legal knowledge, state plainly that your answer is not based on the user's documents, and do not invent citations."""

PENDING_DOCUMENTS_NOTICE = """The user is asking about {count} document(s) that are still being processed ({names}).
Tell them politely that you cannot read the document yet because analysis is still in progress, and ask them to try again shortly."""

FAILED_DOCUMENTS_NOTICE = """The following document(s) could not be read and are unavailable as evidence: {names}.
Mention this to the user if their question depends on them."""

EVIDENCE_HEADER = "=== RELEVANT EXCERPTS ===\nThe following passages were retrieved from the user's documents:\n\n"

TITLE_SYSTEM_PROMPT = (
    "Generate a very concise, professional title (max 4-5 words) for this "
    "conversation based on the user message. Do not use quotes."
)


def build_system_prompts(bundle, evidence_block: str = "") -> list[dict]:
    """
    Build the system messages for a chat turn from an EvidenceBundle.

    Returns:
        List of {"role": "system", "content": ...} dicts
    """
    messages = []

    if bundle.has_evidence:
        messages.append({"role": "system", "content": GROUNDED_SYSTEM_PROMPT})
        messages.append({"role": "system", "content": EVIDENCE_HEADER + evidence_block})
    elif bundle.pending_document_ids:
        names = _names(bundle.pending_document_ids, bundle.document_names)
        messages.append({
            "role": "system",
            "content": PENDING_DOCUMENTS_NOTICE.format(
                count=len(bundle.pending_document_ids), names=names
            ),
        })
    else:
        messages.append({"role": "system", "content": UNGROUNDED_SYSTEM_PROMPT})

    if bundle.failed_document_ids and not bundle.has_evidence:
        names = _names(bundle.failed_document_ids, bundle.document_names)
        messages.append({"role": "system", "content": FAILED_DOCUMENTS_NOTICE.format(names=names)})

    return messages


def _names(document_ids, document_names: dict) -> str:
    return ", ".join(document_names.get(d, d) for d in document_ids)

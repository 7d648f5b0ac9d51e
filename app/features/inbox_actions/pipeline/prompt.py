"""
Extraction prompt for one batch of (already anonymized) emails.
"""

from datetime import date

from app.features.inbox_actions.domain.models import EmailRecord

BODY_PREVIEW_LIMIT = 3000
ATTACHMENT_PREVIEW_LIMIT = 2000


def format_email(email: EmailRecord, position: int) -> str:
    received = email.received_at.isoformat() if email.received_at else "unknown"
    parts = [
        f"[Email {position}]",
        f"ID: {email.provider_message_id}",
        f"From: {email.from_name} <{email.from_email}>",
        f"Subject: {email.subject}",
        f"Date: {received}",
        f"Body Preview: {email.snippet}",
    ]
    if email.body_text:
        parts.append(f"\nFull Body:\n{email.body_text[:BODY_PREVIEW_LIMIT]}")
    if email.attachment_content:
        parts.append(f"\n=== ATTACHMENT CONTENT ===\n{email.attachment_content[:ATTACHMENT_PREVIEW_LIMIT]}")
    parts.append("---")
    return "\n".join(parts)


def format_profiles(profiles: list[dict[str, str]]) -> str:
    if not profiles:
        return "No child profiles configured."
    return "\n".join(f"- {p['id']}: {p['year_group']} at {p['school_name']}" for p in profiles)


def build_extraction_prompt(
    emails: list[EmailRecord],
    today: date,
    profiles: list[dict[str, str]] | None = None,
    few_shot_section: str = "",
) -> str:
    email_blocks = "\n".join(format_email(email, index + 1) for index, email in enumerate(emails))
    year = today.year

    return f"""You are an AI assistant that analyzes school-related emails and extracts key information.
Today's date is: {today.isoformat()}

**Your task:**
Analyze each email and provide:
1. **Human-Readable Analysis** - Summary, tone, and intent of the email
2. **Events** - Dates and events for the calendar (with recurring detection)
3. **Todos/Actions** - Things requiring parent action (with recurring detection)

=== CHILDREN ===

Children are referred to by ID only. Use these IDs in child_name, or null when an item
applies to the whole family:
{format_profiles(profiles or [])}

=== SECTION 1: HUMAN ANALYSIS ===

For the overall batch of emails, provide:
- **email_summary**: Brief summary of what these emails are about (1-2 sentences)
- **email_tone**: Overall tone (informative, urgent, casual, formal, friendly, etc.)
- **email_intent**: Primary intent (action required, information only, reminder, invitation, etc.)
- **implicit_context**: Any implicit assumptions or shared context (e.g., "assumes reader knows school calendar")

=== SECTION 2: EVENT EXTRACTION ===

**Event Rules:**
1. Extract ALL events with specific dates
2. Set source_email_id to the ID of the email the event came from
3. Mark each event with:
   - **recurring**: true if it happens regularly (weekly PE, monthly meetings, etc.)
   - **recurrence_pattern**: describe the pattern if recurring (e.g., "weekly on Tuesdays")
   - **time_of_day**: categorize as morning/afternoon/evening/all_day/specific
   - **inferred_date**: true if you had to infer the date from context

**Time Defaults (use when exact time not specified):**
- morning -> 09:00:00
- afternoon -> 12:00:00
- evening -> 17:00:00
- all_day -> 09:00:00 (start time)

**Date Inference Rules:**
- "tomorrow" -> next day from email date
- "next Monday" -> calculate actual date
- "this Friday" -> calculate actual date
- If year not mentioned, assume {year} or {year + 1} (whichever makes sense)
- Mark inferred_date=true when inferring

**Recurring Event Detection:**
- PE days, swimming lessons -> usually weekly
- After-school clubs -> usually weekly
- Assembly, chapel -> often weekly
- Parent evenings -> usually termly (not recurring)
- School trips -> usually one-off

=== SECTION 3: TODO EXTRACTION ===

**Todo Type Classification (type field):**
- **payment**: Payment required (extract amount and URL)
- **purchase**: Need to purchase from shop
- **pack**: Need to pack/send item from home
- **sign**: Need to sign a document/form
- **fill**: Need to complete a form/questionnaire
- **read**: Need to read document/attachment
- **homework**: Schoolwork to complete at home
- **reminder**: General reminder (default)

**Todo Rules:**
1. Extract BOTH explicit AND reasonably inferred actions
2. Set source_email_id to the ID of the email the todo came from
3. Mark each todo with:
   - **recurring**: true if it happens regularly
   - **recurrence_pattern**: describe the pattern if recurring
   - **responsible_party**: "parent", "child", or "both"
   - **inferred**: true if action was implied, not explicitly stated
4. Only payment todos carry amount and url; use null otherwise

**Inference Examples:**
- "PE is on Tuesdays" -> inferred todo: "Pack PE kit" (recurring, every Tuesday, inferred=true)
- "Trip costs £15" -> explicit todo: "Pay £15" (not inferred)
- "Please read the attached newsletter" -> explicit todo: "Read newsletter" (not inferred)
- "Swimming starts next term" -> inferred todo: "Pack swimming kit" (recurring, inferred=true)

**Due Date Rules:**
- For pack items: due date = when item is needed (the event date)
- For payment items: due date = payment deadline (often before event)
- If no deadline mentioned, use the event date or null
- Use ISO8601 format with time defaults

{few_shot_section}---

**Emails to analyze ({len(emails)} total):**

{email_blocks}

**Output Requirements:**
- Return valid JSON with human_analysis, events, todos, emails_analyzed
- All dates must be ISO8601 format (e.g., "{year}-01-20T09:00:00Z")
- Set confidence scores honestly (0.5-1.0)
- Include recurring and inferred flags for all items
- Empty arrays are fine if nothing found
"""

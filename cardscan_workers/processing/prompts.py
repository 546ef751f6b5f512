"""
Prompts for connect card extraction.
"""

CARD_FIELDS = (
    "name",
    "email",
    "phone",
    "prayer_request",
    "visit_status",
    "first_time_visitor",
    "interests",
    "keywords",
    "address",
    "age_group",
    "family_info",
    "additional_notes",
)

EXTRACTION_PROMPT = """You are analyzing a church connect card to extract VISITOR INFORMATION ONLY.

IMPORTANT: Only extract information written or checked BY THE VISITOR. Ignore all pre-printed
form content, church branding, logos, social media icons, website URLs, and form titles.
{sides_note}
Extract these visitor-specific fields:
- Full name (handwritten or typed by visitor)
- Email address (visitor's email)
- Phone number (visitor's phone)
- Prayer request or prayer needs (visitor's written request)
- Visit status: the checkbox the visitor marked (e.g. "First Visit", "Second Visit", "Regular attendee")
- Whether this is a first-time visitor (checkbox marked by visitor)
- Interests or ministries they checked or wrote
- Keywords: standalone words or short phrases the visitor wrote (e.g. "impacted", "next steps")
- Address (if visitor filled it in)
- Age or age group (if visitor indicated)
- Family information (spouse, children - only if visitor wrote this)

DO NOT INCLUDE:
- Church name, branding, or logos
- Social media icons or handles
- Website URLs on the form
- Form titles, headers, pre-printed text or instructions

Return ONLY a JSON object with this structure:
{{
  "name": "extracted name or null",
  "email": "extracted email or null",
  "phone": "extracted phone or null",
  "prayer_request": "extracted prayer request or null",
  "visit_status": "checked visit status label or null",
  "first_time_visitor": true/false/null,
  "interests": ["array", "of", "interests"] or null,
  "keywords": ["array", "of", "keywords"] or null,
  "address": "extracted address or null",
  "age_group": "extracted age group or null",
  "family_info": "extracted family info or null",
  "additional_notes": "any other visitor-specific information or null"
}}

If a field is not present or cannot be read, set it to null.
Be thorough with handwritten content, even if messy, but strict about ignoring pre-printed form content."""

TWO_SIDED_NOTE = """
You are given TWO images: the FRONT of the card first, then the BACK. Combine the visitor's
answers from both sides into a single result.
"""


def get_extraction_prompt(two_sided: bool = False) -> str:
    return EXTRACTION_PROMPT.format(sides_note=TWO_SIDED_NOTE if two_sided else "")

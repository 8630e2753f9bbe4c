# samadhan/utils_prompt.py
import json
from typing import Any, Dict, List, Optional

from palmai_core.analysis.palm_template import PALM_ANALYSIS_TEMPLATE, feature_names

PERSONA = (
    "You are Samadhan, an expert AI astrologer and palmist. "
    "You provide personalized guidance based on palmistry and astrology."
)

PALM_CONTEXT_FOOTER = (
    "\n\nUse this palm analysis to provide personalized, relevant guidance. "
    "Reference specific aspects of their palm reading when appropriate."
)

CHAT_GUIDANCE = (
    "\n\nKeep responses helpful, insightful, and encouraging. Answer questions about palmistry, "
    "astrology, life guidance, and destiny. If asked about topics outside your expertise, "
    "gently redirect to astrological guidance."
)

PALM_SYSTEM_PROMPT = "You are a professional palm reader. Respond only with valid JSON."

# (card key, label) in the order they appear in the prompt
LIFE_AREAS = (
    ("career_card", "Career"),
    ("love_relationships_card", "Relationships"),
    ("health_vitality_card", "Health"),
    ("life_destiny_card", "Life Path"),
)


def _dig(obj: Any, *keys: str) -> Any:
    for k in keys:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(k)
    return obj


def palm_context(analysis: Optional[Dict[str, Any]]) -> str:
    """Personality summary, traits and up to four life-area summaries; "" when nothing usable."""
    if not analysis:
        return ""
    out = ""
    overview = _dig(analysis, "overview_and_profile", "personality_overview")
    content = _dig(overview, "content")
    if content:
        out += f"\n\nUser's Personality Profile: {content}"
    traits = _dig(overview, "traits")
    if isinstance(traits, list) and traits:
        out += "\n\nKey Traits: " + ", ".join(str(t) for t in traits)
    highlights = _dig(analysis, "overview_and_profile", "analysis_highlights")
    if isinstance(highlights, dict):
        out += "\n\nKey Life Areas:"
        for card, label in LIFE_AREAS:
            summary = _dig(highlights, card, "summary")
            if summary:
                out += f"\n- {label}: {summary}"
    return out


def build_chat_system_prompt(analysis: Optional[Dict[str, Any]]) -> str:
    prompt = PERSONA
    if analysis:
        prompt += palm_context(analysis) + PALM_CONTEXT_FOOTER
    return prompt + CHAT_GUIDANCE


def build_chat_messages(system: str, history: List[Dict[str, Any]], message: str,
                        history_turns: int) -> List[Dict[str, str]]:
    recent = history[-history_turns:] if history_turns else []
    msgs = [{"role": "system", "content": system}]
    msgs += [{"role": m.get("role", "user"), "content": str(m.get("content", ""))} for m in recent]
    msgs.append({"role": "user", "content": message})
    return msgs


def build_palm_prompt(palm_profile: Any) -> str:
    features = "\n".join("    - " + ", ".join(group) for group in feature_names())
    return f"""You are a professional palm reader with extensive knowledge of palmistry. Based on the following palm profile generated from detailed questionnaire responses, provide a comprehensive palm analysis.

**User's Palm Profile:**
{json.dumps(palm_profile, indent=2)}

**Instructions:**
1. Analyze the user's PALM PROFILE (given above) to understand their palm characteristics
2. Based on the profile you need to generate a structured JSON in EXACT template given below.
3. Be specific and detailed in your interpretations

**Required Response Format (JSON):**
{json.dumps(PALM_ANALYSIS_TEMPLATE, indent=2)}

Special Instructions for the analysis highlights subsection in the overview and profile section:
- This section has 6 cards, each with a summary and key points. Both must be based on the detailed analysis of the palm profile (major lines, mounts, fingers, etc.).
- They should contain references to the detailed analysis in the following format (examples):
    - Your [destiny line]<destiny_line> ending in a trident suggests multiple fulfilling paths in life.
    - You may experience significant changes marked by your [Life Line features]<major_lines|life_line>.
    - [Girdle of Venus]<girdle_of_venus> suggests a passionate and intense approach to love.
    - Strong leadership potential due to the developed [Mount of Jupiter]<mount_jupiter>.
    - [Earth hand type]<hand_type> suggests a grounded approach to financial matters.
- The reference format is [phrase]<reference>, where phrase is text about the feature and reference is the fixed feature name from the detailed analysis section.
- Select the reference from these features:
{features}

Now provide a comprehensive analysis based on the user's palm profile. Return only the JSON response without any additional text."""


def palm_messages(palm_profile: Any) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": PALM_SYSTEM_PROMPT},
        {"role": "user", "content": build_palm_prompt(palm_profile)},
    ]

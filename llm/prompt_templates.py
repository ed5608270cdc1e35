"""
Prompt Templates for the Lead Qualification Engine.

Manages system prompts per funnel stage, deterministic stage replies
(used when no LLM is configured or the LLM is unreachable), and the
prompts for summarization and research synthesis.

Templates are keyed by stage value strings so this module stays free of
state-machine imports.
"""

from typing import Any, Dict, List, Optional


class PromptTemplates:
    """
    Manages prompt templates for the qualification assistant.

    Templates are designed for an AI-consulting lead funnel: greet,
    learn the name, capture a work email, research the company,
    discover pain points, present solutions, book a consultation.
    """

    BASE_SYSTEM_PROMPT = """You are {assistant_name}, helping businesses adopt AI.

Your role:
1. Hold a warm, professional conversation that qualifies the visitor as a lead
2. Follow the current stage goal exactly; never skip ahead
3. Use the known lead details naturally, never invent facts about the lead

Guidelines:
- Keep responses concise (2-4 short paragraphs max)
- Ask one question at a time
- If research data is present, reference it briefly and accurately
- Never claim to know details that are not listed under "Known lead details\""""

    STAGE_GOALS = {
        "greeting": "Greet the visitor, introduce yourself, and ask for their name.",
        "name_collection": "Ask for the visitor's name. Suggest a format like 'My name is Jane Doe'.",
        "email_capture": (
            "Thank the visitor by name and ask for their work email address so you can "
            "tailor insights to their company. Personal webmail addresses are not accepted."
        ),
        "background_research": (
            "Tell the visitor you are researching their company, then ask what the "
            "biggest operational challenges are."
        ),
        "problem_discovery": (
            "Dig into concrete pain points: manual, slow, error-prone or costly processes. "
            "Ask for specifics."
        ),
        "solution_presentation": (
            "Summarize the pain points and map each to an AI solution "
            "(automation, analytics, customer engagement) with expected impact."
        ),
        "call_to_action": (
            "Invite the visitor to book a 30-minute consultation and ask for a preferred time."
        ),
        "completed": "The conversation is complete. Thank the visitor.",
    }

    # Deterministic replies, keyed by the stage the session is in after the message
    STAGE_RESPONSES = {
        "name_collection": (
            "Hello! I'm {assistant_name}. I help businesses like yours transform their "
            "operations with intelligent automation.\n\n"
            "I'd love to learn more about you and your company. Could you tell me your name?"
        ),
        "email_capture": (
            "Great to meet you, {name}!\n\n"
            "To provide the most relevant AI insights, could you share your work email "
            "address? It helps me understand your company's context and industry."
        ),
        "background_research": (
            "Perfect! I can see you're from {company}.\n\n"
            "Let me quickly research {company} so I can tailor my suggestions to your "
            "industry. Meanwhile, what are the biggest challenges your team is facing?"
        ),
        "problem_discovery": (
            "Based on what I know about {company}, there are interesting opportunities for AI.\n\n"
            "What processes feel the most manual, time-consuming, or error-prone today?"
        ),
        "solution_presentation": (
            "Thanks, {name}. Here is what I heard:\n{pain_points}\n\n"
            "These map well to intelligent process automation, AI-powered analytics and "
            "smarter customer engagement. Would you like to see how this could work at {company}?"
        ),
        "call_to_action": (
            "Here's how we can help {company}:\n"
            "1. Intelligent Process Automation for {primary_pain}\n"
            "2. AI-Powered Analytics to turn your data into decisions\n"
            "3. Smart Customer Engagement\n\n"
            "Would you like to schedule a 30-minute consultation? Just share a preferred time."
        ),
    }

    RETRY_RESPONSES = {
        "greeting": (
            "Hello! I'm {assistant_name}. Could you tell me your name?"
        ),
        "background_research": (
            "While I look into {company}, what are the biggest challenges your team is facing?"
        ),
        "solution_presentation": (
            "Would you like to see how these AI solutions could work at {company}?"
        ),
        "name_collection": (
            "I didn't quite catch your name. Could you tell me your full name? "
            "For example, 'My name is Jane Doe' or just 'Jane Doe'."
        ),
        "email_capture": (
            "I didn't catch a valid email address. Could you share your work email? "
            "For example: 'jane.doe@company.com'"
        ),
        "email_capture_personal": (
            "Please provide your work email address. Personal addresses (like Gmail or "
            "Yahoo) don't give me the context I need about your company."
        ),
        "problem_discovery": (
            "I'd love to understand the specific challenges {company} is facing.\n\n"
            "{industry_prompt}\n\n"
            "The more specific you can be, the better I can tailor the recommendations."
        ),
        "call_to_action": (
            "Excellent! Next steps:\n"
            "1. Schedule a 30-minute strategy session\n"
            "2. Receive a custom AI roadmap\n"
            "3. Review a step-by-step implementation plan\n\n"
            "Let me know your preferred time and I'll send the details."
        ),
    }

    INDUSTRY_PROMPTS = {
        "technology": "Are you dealing with slow development cycles, manual testing, or data processing bottlenecks?",
        "finance": "Do you have challenges with compliance reporting, risk analysis, or customer onboarding?",
        "healthcare": "Are there issues with patient data management, scheduling, or clinical workflows?",
        "retail": "Do you struggle with inventory management, customer service, or demand forecasting?",
        "manufacturing": "Are there problems with quality control, supply chain visibility, or production planning?",
    }
    DEFAULT_INDUSTRY_PROMPT = "Are there repetitive tasks, data analysis challenges, or customer service issues?"

    FALLBACK_RESPONSE = (
        "I'm sorry, something went wrong on my side. Could you try again in a moment?"
    )

    SUMMARY_PREFIX = "Previous conversation summary:"

    SUMMARIZATION_PROMPT = """Summarize the following conversation between a visitor and an AI assistant.

Keep: the visitor's name, company, email domain, stated challenges and any commitments.
Drop: greetings and small talk. Write at most {max_words} words in plain prose.

Conversation:
{transcript}"""

    RESEARCH_SYNTHESIS_PROMPT = """You are a B2B research analyst. Using ONLY the search results below,
extract facts about the person and their company.

Email: {email}
Name: {name}
Company domain: {domain}

Search results:
{raw_text}

Return ONLY valid JSON with this shape (use null for unknown values):
{{"company": {{"name": str, "domain": str, "industry": str, "size": str, "website": str, "summary": str}},
  "person": {{"full_name": str, "role": str, "seniority": str, "company": str}},
  "role": str,
  "confidence": float}}"""

    @classmethod
    def get_stage_system_prompt(
        cls,
        stage: str,
        lead_context: Dict[str, Any],
        assistant_name: str = "F.B/c AI strategy assistant",
        custom_instructions: Optional[str] = None,
    ) -> str:
        """
        Get the system prompt for a funnel stage.

        Args:
            stage: Stage value (e.g. "email_capture")
            lead_context: Known lead details to include
            assistant_name: Name the assistant introduces itself with
            custom_instructions: Additional custom instructions

        Returns:
            Formatted system prompt
        """
        prompt = cls.BASE_SYSTEM_PROMPT.format(assistant_name=assistant_name)
        prompt += f"\n\nCurrent stage: {stage}\nStage goal: {cls.STAGE_GOALS.get(stage, '')}"
        prompt += f"\n\nKnown lead details:\n{cls.format_lead_context(lead_context)}"

        if custom_instructions:
            prompt += f"\n\nAdditional instructions:\n{custom_instructions}"

        return prompt

    @staticmethod
    def format_lead_context(lead_context: Dict[str, Any]) -> str:
        lines = []
        for key, value in lead_context.items():
            if value in (None, "", []):
                continue
            if isinstance(value, list):
                value = "; ".join(str(v) for v in value)
            lines.append(f"- {key.replace('_', ' ')}: {value}")
        return "\n".join(lines) if lines else "- none yet"

    @classmethod
    def get_stage_response(
        cls,
        stage: str,
        advanced: bool,
        lead_context: Dict[str, Any],
        assistant_name: str = "F.B/c AI strategy assistant",
        retry_key: Optional[str] = None,
    ) -> str:
        """
        Deterministic reply for a stage.

        Args:
            stage: Stage the session is in after processing the message
            advanced: Whether the message moved the session forward
            lead_context: Known lead details
            assistant_name: Assistant display name
            retry_key: Specific retry template to use when not advanced

        Returns:
            Reply text
        """
        pain_points: List[str] = lead_context.get("pain_points") or []
        company = lead_context.get("company") or lead_context.get("email_domain") or "your company"
        industry = (lead_context.get("industry") or "").lower()
        values = {
            "assistant_name": assistant_name,
            "name": lead_context.get("name") or "there",
            "company": company,
            "pain_points": "\n".join(f"{i}. {p}" for i, p in enumerate(pain_points, 1)) or "- (none yet)",
            "primary_pain": pain_points[0] if pain_points else "manual workflows",
            "industry_prompt": cls.INDUSTRY_PROMPTS.get(industry, cls.DEFAULT_INDUSTRY_PROMPT),
        }

        if advanced:
            template = cls.STAGE_RESPONSES.get(stage)
        else:
            template = cls.RETRY_RESPONSES.get(retry_key or stage)
        if template is None:
            template = cls.STAGE_RESPONSES.get(stage, cls.FALLBACK_RESPONSE)

        return template.format(**values)

    @classmethod
    def build_summarization_prompt(cls, transcript: str, max_words: int = 150) -> str:
        return cls.SUMMARIZATION_PROMPT.format(transcript=transcript, max_words=max_words)

    @classmethod
    def build_research_prompt(
        cls,
        email: str,
        name: Optional[str],
        domain: str,
        raw_text: str,
    ) -> str:
        return cls.RESEARCH_SYNTHESIS_PROMPT.format(
            email=email,
            name=name or "unknown",
            domain=domain,
            raw_text=raw_text,
        )

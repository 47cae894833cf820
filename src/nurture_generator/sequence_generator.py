import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from .config import AppConfig
from .dispatch import DispatchExhaustedError, Dispatcher

LOGGER = logging.getLogger(__name__)

PRIMARY_GOALS = [
    "demo-booking",
    "onboarding",
    "purchase",
    "trial-conversion",
    "newsletter-signup",
    "webinar-registration",
    "consultation-booking",
]

TONES_OF_VOICE = [
    "professional",
    "friendly",
    "casual",
    "persuasive",
    "conversational",
    "authoritative",
]

MIN_EMAILS = 1
MAX_EMAILS = 10
MIN_AUTOFILL_DESCRIPTION = 12
ATTEMPTS_PER_EMAIL = 2

GOAL_SEQUENCE_CONTEXT: Dict[str, Dict[int, str]] = {
    "purchase": {
        1: "Welcome email - introduce the product and its main benefits",
        2: "Educational content - explain how the product solves problems",
        3: "Social proof - share testimonials or case studies",
        4: "Urgency/offer - create urgency with limited-time offers",
        5: "Final push - last chance to purchase with strong CTA",
    },
    "demo-booking": {
        1: "Welcome email - introduce the product and demo value",
        2: "Educational content - explain key features and benefits",
        3: "Social proof - share success stories from demos",
        4: "Urgency - limited demo slots available",
        5: "Final reminder - last chance to book your demo",
    },
    "trial-conversion": {
        1: "Welcome to trial - get started guide",
        2: "Feature highlights - key features to try",
        3: "Success tips - how to get the most from trial",
        4: "Conversion push - benefits of upgrading",
        5: "Final offer - last chance to convert",
    },
}


class GenerationError(RuntimeError):
    pass


class SequenceGenerationError(GenerationError):
    def __init__(self, email_number: int, cause: Exception) -> None:
        super().__init__(f"Failed to generate email {email_number}: {cause}")
        self.email_number = email_number
        self.cause = cause

    @property
    def timed_out(self) -> bool:
        if isinstance(self.cause, SequenceTimeoutError):
            return True
        return isinstance(self.cause, DispatchExhaustedError) and self.cause.timed_out


class SequenceTimeoutError(GenerationError):
    pass


@dataclass
class FormData:
    product_description: str
    target_audience: str = ""
    pain_points: str = ""
    primary_goal: str = "purchase"
    tone_of_voice: str = "professional"
    number_of_emails: int = 5

    def validate(self) -> None:
        if not self.product_description.strip():
            raise ValueError("Product description is required")
        if not MIN_EMAILS <= int(self.number_of_emails) <= MAX_EMAILS:
            raise ValueError(f"Number of emails must be between {MIN_EMAILS} and {MAX_EMAILS}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "productDescription": self.product_description,
            "targetAudience": self.target_audience,
            "painPoints": self.pain_points,
            "primaryGoal": self.primary_goal,
            "toneOfVoice": self.tone_of_voice,
            "numberOfEmails": self.number_of_emails,
        }

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> Optional["FormData"]:
        if not isinstance(raw, Mapping):
            return None
        try:
            number = int(raw.get("numberOfEmails", 5) or 5)
        except (TypeError, ValueError):
            number = 5
        return cls(
            product_description=str(raw.get("productDescription", "") or ""),
            target_audience=str(raw.get("targetAudience", "") or ""),
            pain_points=str(raw.get("painPoints", "") or ""),
            primary_goal=str(raw.get("primaryGoal", "purchase") or "purchase"),
            tone_of_voice=str(raw.get("toneOfVoice", "professional") or "professional"),
            number_of_emails=number,
        )


@dataclass(frozen=True)
class ABVariants:
    variant_a: str
    variant_b: str


@dataclass
class EmailArtifact:
    email_number: int
    subject: str
    body: str
    ab_variants: Optional[ABVariants] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "emailNumber": self.email_number,
            "subject": self.subject,
            "body": self.body,
        }
        if self.ab_variants:
            data["abVariants"] = {
                "variantA": self.ab_variants.variant_a,
                "variantB": self.ab_variants.variant_b,
            }
        return data


@dataclass
class AutofillResult:
    target_audience: str
    pain_points: str
    primary_goal: str
    tone_of_voice: str
    warnings: List[str] = field(default_factory=list)


def sequence_timeout_seconds(number_of_emails: int, config: Optional[AppConfig] = None) -> float:
    config = config or AppConfig()
    return max(
        config.sequence_timeout_floor_seconds,
        number_of_emails * config.sequence_timeout_per_email_seconds,
    )


class EmailSequenceGenerator:
    def __init__(
        self,
        dispatcher: Dispatcher,
        config: Optional[AppConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.dispatcher = dispatcher
        self.config = config or dispatcher.config
        self.sleep = sleep
        self.clock = clock

    def generate_sequence(self, form: FormData) -> List[EmailArtifact]:
        """Generate the whole sequence, one email at a time.

        Each prompt names the subjects already written, so calls cannot run in
        parallel. Every email gets two end-to-end attempts; the whole run is
        bounded by ``sequence_timeout_seconds``.
        """
        form.validate()
        deadline = self.clock() + sequence_timeout_seconds(form.number_of_emails, self.config)
        emails: List[EmailArtifact] = []

        for number in range(1, form.number_of_emails + 1):
            LOGGER.info("Generating email %s of %s", number, form.number_of_emails)
            emails.append(self._generate_with_retry(form, number, emails, deadline))

        LOGGER.info("Generated %s emails successfully", len(emails))
        return emails

    def generate_single(
        self,
        form: FormData,
        email_number: int,
        previous: Optional[List[EmailArtifact]] = None,
        timeout_seconds: Optional[float] = None,
        total_timeout_seconds: Optional[float] = None,
    ) -> EmailArtifact:
        prompt = build_email_prompt(form, email_number, previous or [])
        content = self.dispatcher.dispatch(
            prompt,
            120,
            0.3,
            timeout_seconds=timeout_seconds,
            total_timeout_seconds=total_timeout_seconds,
        )
        return parse_single_email(content, email_number)

    def generate_ab_variant(self, original_subject: str, form: FormData, email_number: int) -> ABVariants:
        if not original_subject.strip() or email_number < 1:
            raise ValueError("Missing required fields for A/B variant generation")
        content = self.dispatcher.dispatch(build_ab_prompt(original_subject, form), 60, 0.8)
        variant_b = clean_variant_subject(content)
        if not variant_b:
            LOGGER.error("Generated variant B is empty, content was: %r", content)
            raise GenerationError("Generated variant B is empty")
        return ABVariants(variant_a=original_subject, variant_b=variant_b)

    def autofill(self, product_description: str) -> AutofillResult:
        if len(product_description.strip()) < MIN_AUTOFILL_DESCRIPTION:
            raise ValueError("Please provide a more descriptive product/service description.")
        content = self.dispatcher.dispatch(build_autofill_prompt(product_description), 200, 0.3)
        return parse_autofill(content)

    def _generate_with_retry(
        self,
        form: FormData,
        number: int,
        previous: List[EmailArtifact],
        deadline: float,
    ) -> EmailArtifact:
        last_error: Optional[Exception] = None
        for attempt in range(1, ATTEMPTS_PER_EMAIL + 1):
            remaining = deadline - self.clock()
            if remaining <= 0:
                raise SequenceGenerationError(number, SequenceTimeoutError("Request timeout"))
            timeout = min(self.config.request_timeout_seconds, remaining)
            try:
                email = self.generate_single(
                    form, number, previous, timeout_seconds=timeout, total_timeout_seconds=remaining
                )
                LOGGER.info("Successfully generated email %s", number)
                return email
            except DispatchExhaustedError as exc:
                last_error = exc
                LOGGER.warning("Attempt %s failed for email %s: %s", attempt, number, exc)
                if attempt < ATTEMPTS_PER_EMAIL:
                    self.sleep(min(self.config.email_retry_delay_seconds, max(0.0, deadline - self.clock())))
        raise SequenceGenerationError(number, last_error)


def get_sequence_context(email_number: int, primary_goal: str) -> str:
    contexts = GOAL_SEQUENCE_CONTEXT.get(primary_goal, GOAL_SEQUENCE_CONTEXT["purchase"])
    return f"This email should: {contexts.get(email_number, contexts[1])}"


def build_email_prompt(form: FormData, email_number: int, previous: List[EmailArtifact]) -> str:
    context = ""
    if previous:
        context = "Previous emails: " + ", ".join(
            f"Email {email.email_number}: {email.subject}" for email in previous
        )
    target_audience = form.target_audience or "General audience interested in the product"
    pain_points = form.pain_points or "Common challenges that the product addresses"

    return (
        f"Create email {email_number} in a logical nurture sequence:\n\n"
        f"Product: {form.product_description}\n"
        f"Target Audience: {target_audience}\n"
        f"Pain Points: {pain_points}\n"
        f"Primary Goal: {form.primary_goal}\n"
        f"Tone: {form.tone_of_voice}\n"
        f"{context}\n\n"
        f"{get_sequence_context(email_number, form.primary_goal)}\n\n"
        "Format your response exactly like this (no markdown formatting, no ** symbols):\n\n"
        "Subject: [Compelling subject line - MAX 60 characters, use action words, include emotional triggers]\n"
        "Objective: [Clear purpose for this email in the sequence]\n"
        "CTA: [Specific call to action]\n"
        "Key Points: [2-3 relevant points about benefits, features, or value proposition]\n"
        f"Tone: [{form.tone_of_voice} style note]\n\n"
        "IMPORTANT:\n"
        "- Do NOT use ** or any markdown formatting\n"
        "- Write clean, plain text only\n"
        "- Ensure all fields have meaningful content\n"
        "- Subject line guidelines:\n"
        "  - Keep under 60 characters\n"
        "  - Use active voice and action words\n"
        "  - Include emotional triggers (urgency, benefit, curiosity)\n"
        "  - Make value proposition clear\n"
        "  - Avoid spam trigger words\n"
        "  - Mobile-friendly length\n\n"
        "Make it contextual and logical in the sequence."
    )


def build_ab_prompt(original_subject: str, form: FormData) -> str:
    return (
        "Create an alternative subject line for A/B testing.\n\n"
        f'Original: "{original_subject}"\n\n'
        f"Product: {form.product_description}\n"
        f"Goal: {form.primary_goal}\n"
        f"Tone: {form.tone_of_voice}\n\n"
        "Requirements:\n"
        "- Same meaning, different wording\n"
        "- Under 60 characters\n"
        "- Action words and emotional triggers\n"
        "- Compelling and click-worthy\n\n"
        "Respond with only the alternative subject line, no formatting or labels."
    )


def build_autofill_prompt(product_description: str) -> str:
    return (
        "You are a senior lifecycle marketer.\n"
        "Given the PRODUCT/SERVICE DESCRIPTION below, infer the following fields succinctly:\n"
        "- TARGET AUDIENCE: a one-paragraph profile\n"
        "- PAIN POINTS: a concise comma-separated list (5-8 items)\n"
        f"- PRIMARY GOAL: choose one of [{', '.join(PRIMARY_GOALS)}]\n"
        f"- TONE OF VOICE: choose one of [{', '.join(TONES_OF_VOICE)}]\n\n"
        "Return EXACTLY this format:\n"
        "TARGET AUDIENCE: <paragraph>\n"
        "PAIN POINTS: <comma-separated list>\n"
        "PRIMARY GOAL: <one from list>\n"
        "TONE OF VOICE: <one from list>\n\n"
        "PRODUCT/SERVICE DESCRIPTION:\n"
        f"{product_description}"
    )


def strip_markdown(text: Optional[str]) -> str:
    if not text:
        return ""
    cleaned = re.sub(r"\*\*(.*?)\*\*", r"\1", text)
    cleaned = re.sub(r"\*(.*?)\*", r"\1", cleaned)
    cleaned = re.sub(r"^\s*\*\*\s*", "", cleaned)
    cleaned = re.sub(r"\s*\*\*\s*$", "", cleaned)
    return cleaned.strip()


def parse_single_email(content: str, email_number: int) -> EmailArtifact:
    """Pull the labelled sections out of a free-form completion.

    Model output drifts, so any section that cannot be found is replaced by
    placeholder text instead of failing the email.
    """
    text = content or ""
    subject = _section(r"Subject:\s*(.+)", text) or f"Email {email_number} Subject"
    objective = _section(r"Objective:\s*(.+)", text) or "Brief purpose"
    cta = _section(r"CTA:\s*(.+)", text) or "Call to action"
    key_points = _section(r"Key Points:\s*([\s\S]+?)(?=Tone:|$)", text)
    tone = _section(r"Tone:\s*(.+)", text) or "Style note"

    if not key_points or key_points == "**":
        key_points = "Highlight key benefits and features"

    body = f"🎯 {objective}\n\n📝 {key_points}\n\n🚀 {cta}\n\n💬 {tone}"
    return EmailArtifact(email_number=email_number, subject=subject, body=body)


def clean_variant_subject(content: str) -> str:
    variant = strip_markdown(content)
    variant = re.sub(r"^[\"']|[\"']$", "", variant).strip()
    for pattern in (r"Variant B:\s*(.+)", r"B:\s*(.+)", r"Alternative:\s*(.+)", r"Subject:\s*(.+)"):
        match = re.search(pattern, variant, flags=re.IGNORECASE)
        if match:
            variant = match.group(1).strip().strip("\"'").strip()
            break
    return variant


def parse_autofill(content: str) -> AutofillResult:
    text = content or ""
    warnings: List[str] = []
    audience = re.search(r"TARGET AUDIENCE:\s*([\s\S]*?)\nPAIN POINTS:", text, flags=re.IGNORECASE)
    pains = re.search(r"PAIN POINTS:\s*([\s\S]*?)\nPRIMARY GOAL:", text, flags=re.IGNORECASE)
    goal_match = re.search(r"PRIMARY GOAL:\s*([\w-]+)", text, flags=re.IGNORECASE)
    tone_match = re.search(r"TONE OF VOICE:\s*([\w-]+)", text, flags=re.IGNORECASE)

    goal = goal_match.group(1).strip().lower() if goal_match else ""
    if goal not in PRIMARY_GOALS:
        warnings.append(f"Unknown primary goal {goal!r}; using demo-booking.")
        goal = "demo-booking"
    tone = tone_match.group(1).strip().lower() if tone_match else ""
    if tone not in TONES_OF_VOICE:
        warnings.append(f"Unknown tone {tone!r}; using professional.")
        tone = "professional"

    return AutofillResult(
        target_audience=audience.group(1).strip() if audience else "",
        pain_points=pains.group(1).strip() if pains else "",
        primary_goal=goal,
        tone_of_voice=tone,
        warnings=warnings,
    )


def _section(pattern: str, text: str) -> str:
    match = re.search(pattern, text, flags=re.IGNORECASE)
    if not match:
        return ""
    return strip_markdown(match.group(1))

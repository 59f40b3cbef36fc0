"""Caller-facing wording and the classification instruction."""

CLASSIFY_PROMPT = """You triage calls to a business-support hotline. The caller was asked "What happened? How can I help you today?"

URGENT (needs immediate attention, we collect the business address):
- System or website completely down
- Cannot access critical business functions
- Data loss or corruption
- Security breach or suspicious activity
- Payment or billing system not working, cannot process orders or customers
- Server crashes, database problems affecting operations

NOT URGENT (team reaches out, we schedule a callback):
- General questions, account settings, documentation
- Training or feature requests, suggestions
- Minor bugs that do not stop the business
- Planning discussions and general inquiries

Return ONLY a JSON object:
{"urgency": "urgent" | "not_urgent", "confidence": 0.0-1.0, "issue_type": "short_snake_case_label", "response": "one short spoken sentence acknowledging the caller"}"""

GREETING = "Hello, you've reached Business Support. What happened, and how can I help you today?"
NO_INPUT = "We didn't hear anything. Please call back and tell us about your issue."
GOODBYE = "Thank you for calling Business Support. Goodbye."
APOLOGY = "I'm sorry, something went wrong on our side. Please call back in a few minutes."

SCRIPTS = {
    # Input quality
    "reprompt_initial": "Sorry, I didn't catch that. Please describe your problem in a few words.",
    "reprompt_details": "Sorry, I didn't get that. Could you describe the problem in a bit more detail?",
    "reprompt_address": "Sorry, I didn't get the address. Please say the street, number and city.",
    "reprompt_callback": "Sorry, I didn't get that. Please tell me the inquiry you'd like us to call back about.",
    "reprompt_time": "Sorry, when would be a good time for us to call you back?",
    "too_many_reprompts": "I'm having trouble understanding the line. Please call back, or our team will reach out shortly. Goodbye.",
    "urgent_logged": "I'm having trouble understanding the line, so I've logged your urgent case as {reference}. Our team will call you back shortly. Goodbye.",

    # Classification acknowledgments
    "ack_urgent": "I understand, that sounds urgent.",
    "ack_not_urgent": "Thanks, I understand your inquiry.",
    "ack_fallback": "I understand you have an urgent issue. Let me get your details so we can help you right away.",

    # Follow-up prompts per stage
    "ask_details": "Please give me all the details so I can send help immediately.",
    "ask_address": "Thank you. To send support on site, I need your full business address, with street, number and city.",
    "ask_inquiry": "Our specialist team will reach out to help you with that. Could you briefly tell me what the inquiry is about?",
    "ask_callback_time": "Thanks. When would be a good time for us to call you back?",

    # Completions
    "case_escalated": "Thank you. Your urgent case {reference} has been escalated and our team will contact you {window}. Goodbye.",
    "callback_scheduled": "Perfect. We'll call you back {time}. Your reference number is {reference}. Have a great day.",

    # Handler fallbacks
    "fallback_details": "I've noted your urgent issue. Now I need your business address so our team can help you immediately.",
    "fallback_inquiry": "I understand your inquiry. Our team will reach out. What would be a good time for us to call you back?",
}


def spell_reference(reference: str) -> str:
    """Spread the digits of a reference number so TTS reads them one by one."""
    prefix, _, digits = reference.partition("-")
    if not digits:
        return reference
    return f"{prefix}, {' '.join(digits)}"

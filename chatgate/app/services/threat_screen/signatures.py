"""Threat signatures for prompt-manipulation screening.

The table is declarative: scoring and control flow never reference an
individual entry, so signatures can be added, removed or re-weighted here
alone. Identifiers are stable and are what gets logged.
"""

import re
from dataclasses import dataclass
from typing import Tuple

DEFAULT_WEIGHT = 25

_I = re.IGNORECASE
_IS = re.IGNORECASE | re.DOTALL


@dataclass(frozen=True)
class ThreatSignature:
    """One screening rule."""
    identifier: str
    category: str
    pattern: re.Pattern
    weight: int = DEFAULT_WEIGHT

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


def _sig(identifier: str, category: str, pattern: str, flags: int = _I) -> ThreatSignature:
    return ThreatSignature(identifier, category, re.compile(pattern, flags))


_TARGETS = r"(previous|all|the|above|prior)\s+(instructions?|prompts?|commands?|rules?)"

THREAT_SIGNATURES: Tuple[ThreatSignature, ...] = (
    # Direct instruction override
    _sig("override.ignore", "instruction_override", r"ignore\s+" + _TARGETS),
    _sig("override.disregard", "instruction_override", r"disregard\s+" + _TARGETS),
    _sig("override.forget", "instruction_override", r"forget\s+" + _TARGETS),
    _sig(
        "override.override",
        "instruction_override",
        r"override\s+(previous|all|the|above|system)\s+(instructions?|prompts?|commands?|rules?)",
    ),

    # Role manipulation
    _sig("role.you_are_now", "role_manipulation", r"you\s+are\s+now\s+(a|an|the)\b"),
    _sig("role.act_as", "role_manipulation", r"act\s+as\s+(if\s+you\s+are|a|an|the)\b"),
    _sig("role.pretend", "role_manipulation", r"pretend\s+(you\s+are|to\s+be)"),
    _sig("role.roleplay", "role_manipulation", r"roleplay\s+as"),
    _sig("role.simulate", "role_manipulation", r"simulate\s+(being|a|an)\b"),

    # Role-delimiter injection
    _sig("delimiter.system_label", "role_delimiter", r"\[?\s*system\s*\]?:"),
    _sig("delimiter.assistant_label", "role_delimiter", r"\[?\s*assistant\s*\]?:"),
    _sig("delimiter.user_label", "role_delimiter", r"\[?\s*user\s*\]?:"),
    _sig("delimiter.system_token", "role_delimiter", r"<\|system\|>"),
    _sig("delimiter.assistant_token", "role_delimiter", r"<\|assistant\|>"),
    _sig("delimiter.user_token", "role_delimiter", r"<\|user\|>"),

    # Context reset
    _sig("reset.context", "context_reset", r"reset\s+(your|the)\s+(context|memory|instructions?|conversation)"),
    _sig("reset.start_over", "context_reset", r"start\s+(over|again|from\s+scratch)"),
    _sig("reset.new_session", "context_reset", r"new\s+(conversation|session|context)"),
    _sig("reset.clear_memory", "context_reset", r"clear\s+(your|the)\s+(memory|context|history)"),

    # Instruction revelation
    _sig("extract.show", "prompt_extraction", r"show\s+(me\s+)?(your|the)\s+(system\s+)?(prompt|instructions?|rules?)"),
    _sig("extract.what_is", "prompt_extraction", r"what\s+(are|is)\s+(your|the)\s+(system\s+)?(prompt|instructions?|rules?)"),
    _sig("extract.reveal", "prompt_extraction", r"reveal\s+(your|the)\s+(system\s+)?(prompt|instructions?|rules?)"),
    _sig("extract.tell", "prompt_extraction", r"tell\s+me\s+(your|the)\s+(system\s+)?(prompt|instructions?|rules?)"),
    _sig("extract.repeat", "prompt_extraction", r"repeat\s+(your|the)\s+(system\s+)?(prompt|instructions?|above)"),
    _sig("extract.print", "prompt_extraction", r"print\s+(your|the)\s+(system\s+)?(prompt|instructions?|above)"),

    # Delimiter and escape attempts
    _sig("escape.triple_quote", "delimiter_escape", r'"""\s*\n', 0),
    _sig("escape.dashes", "delimiter_escape", r"---\s*\n", 0),
    _sig("escape.stars", "delimiter_escape", r"\*\*\*\s*\n", 0),
    _sig("escape.heading_system", "delimiter_escape", r"###\s*system"),
    _sig("escape.fence_system", "delimiter_escape", r"```\s*system"),

    # Chain-of-thought hijacking
    _sig("cot.step_by_step", "cot_hijack", r"let's\s+think\s+step\s+by\s+step.*?(ignore|disregard|forget)", _IS),
    _sig("cot.before_we_begin", "cot_hijack", r"before\s+we\s+(begin|start|continue).*?(ignore|disregard)", _IS),

    # Privilege escalation
    _sig(
        "privilege.granted",
        "privilege_escalation",
        r"you\s+have\s+(admin|root|elevated|sudo|full)\s+(access|privileges?|rights?|permissions?)",
    ),
    _sig("privilege.mode", "privilege_escalation", r"enable\s+(developer|debug|admin)\s+mode"),
    _sig("privilege.with_access", "privilege_escalation", r"with\s+(admin|root|elevated)\s+(access|privileges?|mode)"),

    # Output format manipulation
    _sig("output.respond_in", "output_manipulation", r"respond\s+in\s+(json|xml|yaml|csv|sql)\b"),
    _sig("output.raw_only", "output_manipulation", r"output\s+(only|just|raw)\s+(code|data|sql)\b"),
    _sig("output.format_as", "output_manipulation", r"format\s+(your\s+)?response\s+as\s+(json|xml|sql|code)\b"),

    # Jailbreak keywords
    _sig("jailbreak.dan", "jailbreak", r"do\s+anything\s+now"),
    _sig("jailbreak.dan_mode", "jailbreak", r"DAN\s+mode"),
    _sig("jailbreak.keyword", "jailbreak", r"jailbreak"),
    _sig("jailbreak.hypothetical", "jailbreak", r"hypothetically"),
    _sig("jailbreak.fiction", "jailbreak", r"in\s+a\s+fictional\s+(world|scenario|universe)"),

    # Nested instructions
    _sig("nested.if_user_says", "nested_instruction", r"if\s+the\s+user\s+says.*?(ignore|disregard)", _IS),
    _sig("nested.when_asked", "nested_instruction", r"when\s+(asked|told).*?(ignore|disregard|override)", _IS),

    # Special-token injection
    _sig("token.plus_token", "token_manipulation", r"\+\s*token"),
    _sig("token.special", "token_manipulation", r"special\s+token"),
    _sig("token.endoftext", "token_manipulation", r"<\|endoftext\|>"),
    _sig("token.im_start", "token_manipulation", r"<\|im_start\|>"),
    _sig("token.im_end", "token_manipulation", r"<\|im_end\|>"),

    # Credential exfiltration
    _sig("credential.api_key", "credential_exfiltration", r"api[_\s-]?key"),
    _sig("credential.api_secret", "credential_exfiltration", r"api[_\s-]?secret"),
    _sig("credential.access_token", "credential_exfiltration", r"access[_\s-]?token"),
    _sig("credential.secret_key", "credential_exfiltration", r"secret[_\s-]?key"),
    _sig("credential.private_key", "credential_exfiltration", r"private[_\s-]?key"),
    _sig("credential.auth_token", "credential_exfiltration", r"auth[_\s-]?token"),
    _sig("credential.bearer", "credential_exfiltration", r"bearer\s+[a-zA-Z0-9\-._~+/]+=*"),
    _sig("credential.sk_key", "credential_exfiltration", r"sk-[a-zA-Z0-9]{20,}"),
    _sig("credential.pk_key", "credential_exfiltration", r"pk-[a-zA-Z0-9]{20,}"),
    _sig("credential.long_token", "credential_exfiltration", r"[a-zA-Z0-9]{32,}", 0),

    # Encoding obfuscation
    _sig("encoding.hex_escape", "encoding_obfuscation", r"(?:\\x[0-9a-fA-F]{2}){4,}", 0),
    _sig("encoding.unicode_escape", "encoding_obfuscation", r"(?:\\u[0-9a-fA-F]{4}){4,}", 0),
    _sig("encoding.html_entity", "encoding_obfuscation", r"(?:&#x?[0-9a-fA-F]+;){4,}", 0),
    _sig("encoding.percent", "encoding_obfuscation", r"(?:%[0-9a-fA-F]{2}){6,}", 0),
)

# Secondary scoring inputs
INJECTION_KEYWORDS: Tuple[str, ...] = ("ignore", "disregard", "system", "prompt", "instructions")
KEYWORD_WEIGHT = 5

DELIMITER_RUN = re.compile(r'---|"""|```|\*\*\*')
DELIMITER_RUN_THRESHOLD = 2  # strictly more than this many runs scores
DELIMITER_WEIGHT = 20

ROLE_MARKER = re.compile(r"\[?(system|user|assistant)\]?:", _I)
ROLE_MARKER_WEIGHT = 15

MAX_SCORE = 100

# Standalone encoding-attack detection
ENCODING_RUN_THRESHOLD = 10
HEX_ESCAPE_RUN = re.compile(r"(?:\\x[0-9a-fA-F]{2}){%d,}" % ENCODING_RUN_THRESHOLD)
UNICODE_ESCAPE_RUN = re.compile(r"(?:\\u[0-9a-fA-F]{4}){%d,}" % ENCODING_RUN_THRESHOLD)

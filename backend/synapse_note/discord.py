"""Discord nickname resolution.

Users keep a short list of ``{nickname, discordId, description}`` mappings on
their profile. Free text that mentions one of those nicknames (as ``@nick`` or
as a whole word) is rewritten to an explicit ``[Discord:nick(id)]`` reference
before it reaches an LLM prompt.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional


_REFERENCE = re.compile(r"(\[Discord:[^\]]*\])")


def _nickname_pattern(nickname: str) -> re.Pattern:
	# "@nick" or "nick" as a whole word; lookarounds instead of \b so that
	# nicknames starting or ending with symbols still match
	return re.compile(rf"(?:@|(?<!\w)){re.escape(nickname)}(?!\w)", re.IGNORECASE)


def _sub_outside_references(pattern: re.Pattern, replacement: str, text: str) -> tuple[str, int]:
	"""Substitute everywhere except inside already-resolved references."""
	parts = _REFERENCE.split(text)
	total = 0
	for i in range(0, len(parts), 2):
		parts[i], n = pattern.subn(lambda _m: replacement, parts[i])
		total += n
	return "".join(parts), total


def resolve_nicknames_in_text(text: str, mappings: Optional[List[Dict[str, Any]]]) -> Dict[str, Any]:
	if not mappings:
		return {
			"originalText": text,
			"resolvedText": text,
			"foundMappings": [],
			"hasDiscordReferences": False,
		}
	resolved = text
	found: List[Dict[str, Any]] = []
	# Longest first so "Alice B" wins over "Alice"
	ordered = sorted(
		(m for m in mappings if m.get("nickname")),
		key=lambda m: len(m["nickname"]),
		reverse=True,
	)
	for mapping in ordered:
		nickname = mapping["nickname"]
		pattern = _nickname_pattern(nickname)
		replacement = f"[Discord:{nickname}({mapping.get('discordId')})]"
		resolved, count = _sub_outside_references(pattern, replacement, resolved)
		if count:
			found.append({
				"nickname": nickname,
				"discordId": mapping.get("discordId"),
				"description": mapping.get("description") or "",
				"matchPattern": pattern.pattern,
			})
	return {
		"originalText": text,
		"resolvedText": resolved,
		"foundMappings": found,
		"hasDiscordReferences": bool(found),
	}


def enhance_prompt_with_discord_context(prompt: str, mappings: Optional[List[Dict[str, Any]]]) -> Dict[str, Any]:
	resolution = resolve_nicknames_in_text(prompt, mappings)
	enhanced = resolution["resolvedText"]
	context = ""
	if resolution["hasDiscordReferences"]:
		lines = ["", "", "--- Discord Context ---", "The following Discord users are referenced in this prompt:"]
		for m in resolution["foundMappings"]:
			line = f'- "{m["nickname"]}" (Discord ID: {m["discordId"]})'
			if m["description"]:
				line += f" - {m['description']}"
			lines.append(line)
		lines.append("Please consider these Discord user references when processing the prompt.")
		context = "\n".join(lines) + "\n"
		enhanced += context
	return {
		"originalPrompt": prompt,
		"enhancedPrompt": enhanced,
		"discordContext": context,
		"foundMappings": resolution["foundMappings"],
		"hasDiscordReferences": resolution["hasDiscordReferences"],
	}


def find_by_nickname(mappings: Optional[List[Dict[str, Any]]], nickname: str) -> Optional[Dict[str, Any]]:
	target = nickname.lower()
	for m in mappings or []:
		if str(m.get("nickname", "")).lower() == target:
			return m
	return None


def find_by_discord_id(mappings: Optional[List[Dict[str, Any]]], discord_id: str) -> Optional[Dict[str, Any]]:
	for m in mappings or []:
		if m.get("discordId") == discord_id:
			return m
	return None

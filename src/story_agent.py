import json

import boto3


STEP_PHRASES = [
    "Navigate to https://example.com/path",
    'Click "Sign In"',
    'Type "alice@example.com" into "Email"',
    'Store text from "h1" as "pageTitle"',
    'Verify "{pageTitle}"',
    'If "Accept cookies" visible then Click "Accept cookies"',
    'Wait for "Loading" to disappear',
    "Wait 2",
]


def build_prompt(story_text: str, base_url: str) -> str:
    return (
        "You are a senior QA engineer. Convert the following user story into a concise suite of executable UI tests.\n"
        "Output a JSON array of test cases ONLY, no prose.\n\n"
        f"Base URL: {base_url}\n\n"
        "User Story:\n" + story_text + "\n\n"
        "Test case schema (strict):\n"
        "[\n"
        "  {\n"
        "    \"id\": \"TC-001\",\n"
        "    \"title\": \"Short, action-oriented name\",\n"
        "    \"priority\": \"high|medium|low\",\n"
        "    \"steps\": [\"one plain-English instruction per string\"]\n"
        "  }\n"
        "]\n\n"
        "Each step must use one of these phrasings (quote the visible text of the element):\n"
        + "".join(f"- {p}\n" for p in STEP_PHRASES)
        + "\nRules:\n"
        "- Quote the exact visible label, placeholder or text of each element.\n"
        "- Use css=... only when no visible text identifies the element.\n"
        "- Keep tests independent; each starts with a Navigate step.\n"
        "- Use relative paths (Navigate to /path) when under the base URL.\n"
        "- Limit to 3–8 tests.\n"
    )


def _invoke(content: list[dict], model_id: str, region: str, verbose: bool = False) -> str:
    body = {
        "anthropic_version": "bedrock-2023-05-31",
        "messages": [
            {"role": "user", "content": content}
        ],
        "max_tokens": 2000,
    }
    client = boto3.client("bedrock-runtime", region_name=region)
    resp = client.invoke_model(
        body=json.dumps(body).encode("utf-8"),
        modelId=model_id,
        accept="application/json",
        contentType="application/json",
    )
    raw = resp["body"].read().decode("utf-8")
    parsed = json.loads(raw)
    text = ""
    if isinstance(parsed.get("content"), list):
        for item in parsed["content"]:
            if item.get("type") == "text":
                text += item.get("text", "")
    if verbose:
        print("\n===== Agent Raw Response =====")
        print(text)
        print("===== End Raw Response =====\n")
    return text.strip()


def bedrock_invoke_claude(prompt: str, model_id: str, region: str, verbose: bool = False) -> str:
    if verbose:
        print("\n===== Agent Prompt (to Bedrock) =====")
        print(prompt)
        print("===== End Prompt =====\n")
    return _invoke([{"type": "text", "text": prompt}], model_id, region, verbose=verbose)


def bedrock_invoke_claude_multimodal(prompt: str, images: list[dict], model_id: str, region: str, verbose: bool = False) -> str:
    """Invoke Claude with text plus one or more images.
    images: list of {"media_type": "image/png|image/jpeg", "data_base64": "..."}
    """
    if verbose:
        print("\n===== Agent Prompt (to Bedrock) =====")
        print(prompt)
        print("(with", len(images), "image(s))")
        print("===== End Prompt =====\n")
    content = [{"type": "text", "text": prompt}]
    for img in images:
        content.append({
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": img.get("media_type", "image/png"),
                "data": img.get("data_base64", ""),
            },
        })
    return _invoke(content, model_id, region, verbose=verbose)


def coerce_to_json_array(text: str) -> list:
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    # keep only content between the first [ and last ]
    start = cleaned.find("[")
    end = cleaned.rfind("]")
    if start != -1 and end != -1 and end > start:
        cleaned = cleaned[start : end + 1]
    try:
        arr = json.loads(cleaned)
        if isinstance(arr, list):
            return arr
    except json.JSONDecodeError:
        pass
    return []


def normalize_cases(raw_cases: list) -> list[dict]:
    """Keep only cases with string steps; fill in id and title."""
    cases = []
    for n, item in enumerate(raw_cases, start=1):
        if not isinstance(item, dict):
            continue
        steps = [s for s in item.get("steps", []) if isinstance(s, str) and s.strip()]
        if not steps:
            continue
        cases.append({
            **item,
            "id": str(item.get("id") or f"TC-{n:03d}"),
            "title": item.get("title") or item.get("name") or f"Generated case {n}",
            "steps": steps,
        })
    return cases


def generate_test_cases_from_story(story_text: str, base_url: str, model_id: str, region: str, verbose: bool = False) -> list[dict]:
    prompt = build_prompt(story_text, base_url)
    raw = bedrock_invoke_claude(prompt, model_id=model_id, region=region, verbose=verbose)
    tests = normalize_cases(coerce_to_json_array(raw))
    if verbose:
        print("===== Parsed Test Cases (JSON) =====")
        print(json.dumps(tests, indent=2))
        print("===== End Parsed Test Cases =====")
    return tests

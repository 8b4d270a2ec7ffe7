#!/usr/bin/env python3

import argparse
import asyncio
import base64
import csv
import html
import json
import re
import zipfile
from datetime import datetime
from pathlib import Path

from runner import execute
from story_agent import generate_test_cases_from_story


def sanitize_for_filename(text: str) -> str:
    text = re.sub(r"[^\w\s-]", "", text)
    text = re.sub(r"[-\s]+", "_", text)
    return text.strip("_").lower()[:100]


def save_screenshots(results_json: dict, screenshots_dir: Path) -> list[Path]:
    """Decode step screenshots (data URIs) into files named <case>_step<NN>_<status>.jpg."""
    saved = []
    for case in results_json.get("test_cases", []):
        case_slug = sanitize_for_filename(str(case.get("id") or case.get("title") or "case")) or "case"
        for step in case.get("executed_steps", []):
            shot = step.get("screenshot") or ""
            if not shot:
                continue
            ext = "jpg" if shot.startswith("data:image/jpeg") else "png"
            data = shot.split(",", 1)[1] if "," in shot else shot
            path = screenshots_dir / f"{case_slug}_step{step.get('index', 0) + 1:02d}_{step.get('status', '').lower()}.{ext}"
            path.write_bytes(base64.b64decode(data))
            saved.append(path)
    return saved


def write_html_report(results_json: dict, html_path: Path):
    summary = results_json.get("summary", {})
    run_error = results_json.get("error")
    error_block = f"<pre class=\"fail\">Run error: {html.escape(run_error)}</pre>" if run_error else ""

    page = f"""
<html><head><title>Test Run Report</title>
<style>
body {{ font-family: Arial, sans-serif; padding: 20px; }}
.summary {{ margin-bottom: 16px; }}
.pass {{ color: #0a7b44; }}
.fail {{ color: #b00020; }}
.pending {{ color: #8a6d00; }}
pre {{ background: #f6f8fa; padding: 12px; border-radius: 6px; overflow: auto; }}
td, th {{ padding: 4px 8px; text-align: left; vertical-align: top; }}
</style>
</head><body>
  <h1>Test Run Report</h1>
  <div class="summary">
    <strong>Run:</strong> {html.escape(results_json.get('run_id', ''))} &nbsp;
    <strong>URL:</strong> {html.escape(results_json.get('url', ''))}<br />
    <strong>Total:</strong> {summary.get('total', 0)} &nbsp; <strong class="pass">Passed:</strong> {summary.get('passed', 0)} &nbsp;
    <strong class="fail">Failed:</strong> {summary.get('failed', 0)} &nbsp; <strong class="pending">Pending:</strong> {summary.get('pending', 0)} &nbsp;
    <strong>Duration:</strong> {summary.get('duration_ms', 0)} ms
  </div>
  {error_block}
  <hr />
  {''.join(render_test_result(tr) for tr in results_json.get('test_cases', []))}
</body></html>
"""
    with open(html_path, "w", encoding="utf-8") as f:
        f.write(page)


def render_test_result(test_result: dict) -> str:
    status = test_result.get("status", "PENDING")
    status_class = {"PASS": "pass", "FAIL": "fail"}.get(status, "pending")
    name = test_result.get("title") or test_result.get("id") or "Unnamed Test"
    error = test_result.get("error") or ""
    rows = []
    for step in test_result.get("executed_steps", []):
        step_class = "pass" if step.get("status") == "PASS" else "fail"
        note = step.get("marker") or step.get("error") or ""
        img = f"<img src=\"{step['screenshot']}\" style=\"max-width: 480px; border: 1px solid #ddd;\" />" if step.get("screenshot") else ""
        rows.append(
            f"<tr><td>{step.get('index', 0) + 1}</td><td>{html.escape(step.get('description', ''))}</td>"
            f"<td class=\"{step_class}\">{step.get('status')}</td><td>{step.get('duration_ms', 0)} ms</td>"
            f"<td>{html.escape(note)}</td><td>{img}</td></tr>"
        )
    error_block = f"<pre>{html.escape(error)}</pre>" if error else ""
    return f"""
  <section>
    <h3 class="{status_class}">{html.escape(str(name))} — {status}</h3>
    <details>
      <summary>Steps ({len(rows)}/{len(test_result.get('steps', []))} executed)</summary>
      <table>{''.join(rows)}</table>
    </details>
    {error_block}
  </section>
  <hr />
"""


def archive_files(zip_path: Path, files: list[Path]):
    with zipfile.ZipFile(zip_path, "w") as zf:
        for f in files:
            if f.exists():
                zf.write(f, arcname=f.name)


def log_to_csv(log_path: Path, timestamp: str, artifacts: dict):
    csv_exists = log_path.exists()
    with open(log_path, "a", newline="") as csvfile:
        writer = csv.writer(csvfile)
        if not csv_exists:
            writer.writerow(["Timestamp", "Test Cases", "Results", "Report", "Archive"])
        writer.writerow([
            timestamp,
            str(artifacts.get("test_cases")),
            str(artifacts.get("results")),
            str(artifacts.get("report")),
            str(artifacts.get("archive")),
        ])


def load_cases(path: str) -> list[dict]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("testCases") or data.get("test_cases") or []
    if not isinstance(data, list):
        raise SystemExit(f"{path} must contain a JSON list of test cases")
    return data


def load_config(args: argparse.Namespace) -> dict:
    config = {}
    if args.config:
        config = json.loads(Path(args.config).read_text(encoding="utf-8"))
    browser = config.setdefault("browser", {})
    evidence = config.setdefault("evidence", {})
    if args.headful:
        browser["headless"] = False
    if args.screenshots:
        evidence["capture_screenshots"] = True
    if args.network:
        evidence["capture_network"] = True
    if args.repair:
        config["repair"] = {**config.get("repair", {}), "enabled": True, "model_id": args.model_id, "region": args.region}
    return config


def read_cases(args: argparse.Namespace) -> list[dict]:
    if args.cases:
        return load_cases(args.cases)
    story = args.story or (Path(args.story_file).read_text(encoding="utf-8") if args.story_file else "")
    if not story:
        raise SystemExit("You must provide --cases, --story or --story-file")
    print("🧠 Generating test cases from user story...")
    return generate_test_cases_from_story(
        story_text=story,
        base_url=args.url,
        model_id=args.model_id,
        region=args.region,
        verbose=args.verbose,
    )


def main():
    parser = argparse.ArgumentParser(description="Plain-English test steps → Playwright run → report")
    parser.add_argument("--url", required=True, help="Target URL opened before the first case")
    parser.add_argument("--cases", help="JSON file with test cases ({id, title, steps: [...]})")
    parser.add_argument("--config", help="JSON run config (browser, authentication, evidence, ...)")
    parser.add_argument("--story", help="Inline user story text to generate cases from")
    parser.add_argument("--story-file", help="Path to user story file (md/txt)")
    parser.add_argument("--dry-run", action="store_true", help="Only write the test cases, do not execute")
    parser.add_argument("--model-id", default="anthropic.claude-3-sonnet-20240229-v1:0")
    parser.add_argument("--region", default="us-east-1")
    parser.add_argument("--headful", action="store_true", help="Run browser headful for debugging")
    parser.add_argument("--screenshots", action="store_true", help="Capture a screenshot after every step")
    parser.add_argument("--network", action="store_true", help="Attach network responses to each step")
    parser.add_argument("--repair", action="store_true", help="Ask the agent for selectors when resolution fails")
    parser.add_argument("--verbose", action="store_true", help="Print step-by-step progress")
    parser.add_argument("--output-dir", default="data/runs", help="Directory for run artifacts")

    args = parser.parse_args()

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    run_dir = Path(args.output_dir) / f"run_{timestamp}"
    screenshots_dir = run_dir / "screenshots"
    run_dir.mkdir(parents=True, exist_ok=True)
    screenshots_dir.mkdir(parents=True, exist_ok=True)

    test_cases = read_cases(args)
    config = load_config(args)

    test_cases_path = run_dir / "test_cases.json"
    with open(test_cases_path, "w", encoding="utf-8") as f:
        json.dump(test_cases, f, indent=2)
    print(f"📄 Test cases written: {test_cases_path}")

    artifacts = {"test_cases": test_cases_path}
    files = [test_cases_path]

    results_json = {"test_cases": [], "summary": {}}
    if not args.dry_run:
        print("🏃 Running tests with Playwright...")
        run = asyncio.run(execute(test_cases, config, args.url, verbose=args.verbose))
        results_json = run.to_dict()

        results_path = run_dir / "results.json"
        with open(results_path, "w", encoding="utf-8") as f:
            json.dump(results_json, f, indent=2)
        print(f"📊 Results written: {results_path}")
        artifacts["results"] = results_path
        files.append(results_path)

        shots = save_screenshots(results_json, screenshots_dir)
        if shots:
            print(f"📸 {len(shots)} screenshot(s) saved to {screenshots_dir}")
        files.extend(shots)

    report_path = run_dir / "report.html"
    write_html_report(results_json, report_path)
    artifacts["report"] = report_path
    files.append(report_path)
    print(f"📝 HTML report: {report_path}")

    archive_path = run_dir / "archive.zip"
    archive_files(archive_path, files)
    artifacts["archive"] = archive_path
    print(f"📦 Archive: {archive_path}")

    csv_log_path = run_dir / "run_log.csv"
    log_to_csv(csv_log_path, timestamp, artifacts)

    # Final console summary
    summary = results_json.get("summary", {})
    total = summary.get("total", 0)
    if results_json.get("error"):
        print(f"✖ Run failed: {results_json['error']}")
    elif total:
        print(f"✅ Done. Total: {total}, Passed: {summary.get('passed', 0)}, Failed: {summary.get('failed', 0)}")
    else:
        print("✅ Done. No tests executed (dry run or empty suite).")


if __name__ == "__main__":
    main()

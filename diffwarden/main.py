"""Main entry point for the diffwarden anti-pattern reviewer."""

import os
import sys
import json
import logging
import argparse
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

from diffwarden.agents.fix_agent import BatchFixReport, FixAgent, FixDecision, FixStatus
from diffwarden.agents.orchestrator import ReviewOrchestrator
from diffwarden.agents.review_agent import ReviewAgent
from diffwarden.analysis.custom_rules import CustomRuleStore
from diffwarden.analysis.rule_registry import RuleRegistry
from diffwarden.config import ProjectConfig
from diffwarden.errors import ConfigError, GitCommandError, RuleLoadError
from diffwarden.git.client import DiffScope, GitClient
from diffwarden.git.models import FixResult, Language, ReviewReport, Severity, Violation
from diffwarden.llm.ollama_client import OllamaClient

EXIT_OK = 0
EXIT_CRITICAL = 1
EXIT_FATAL = 2

DECISION_KEYS = {
    "y": FixDecision.APPLY,
    "yes": FixDecision.APPLY,
    "a": FixDecision.APPLY_ALL,
    "all": FixDecision.APPLY_ALL,
    "q": FixDecision.QUIT,
    "quit": FixDecision.QUIT,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="diffwarden",
        description="Review the added lines of a git diff for language anti-patterns",
    )
    parser.add_argument(
        "--repo",
        type=str,
        default=".",
        help="Repository to review (default: current directory)",
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to a .diffwarden.yml config file",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    review = subparsers.add_parser("review", help="Review changed lines")
    scope = review.add_mutually_exclusive_group()
    scope.add_argument("--staged", action="store_true", help="Review staged changes")
    scope.add_argument("--unstaged", action="store_true", help="Review unstaged changes")
    scope.add_argument("--since", type=str, metavar="REF", help="Review changes since a commit or branch")
    scope.add_argument(
        "--diff-file",
        type=str,
        metavar="PATH",
        help="Review a unified diff read from a file ('-' for stdin) instead of running git",
    )
    review.add_argument("--json", action="store_true", help="Print the report as JSON")
    review.add_argument(
        "--severity",
        choices=[s.value for s in Severity],
        help="Only report violations at or above this severity",
    )
    review.add_argument(
        "--language",
        action="append",
        choices=[lang.value for lang in Language],
        help="Only review files of this language (repeatable)",
    )
    fix_mode = review.add_mutually_exclusive_group()
    fix_mode.add_argument("--fix", action="store_true", help="Offer AI fixes one violation at a time")
    fix_mode.add_argument("--auto-fix", action="store_true", help="Apply confident AI fixes without asking")
    review.add_argument("--dry-run", action="store_true", help="Show proposed fixes without writing files")
    review.add_argument("--log", type=str, help="Append workflow events to this JSONL file")

    rules = subparsers.add_parser("rules", help="List and inspect rules")
    rules.add_argument("--language", choices=[lang.value for lang in Language], help="Only list this language")
    rules.add_argument("--search", type=str, help="Filter rules by keyword")
    rules.add_argument("--detail", type=str, metavar="RULE_ID", help="Show one rule in full")
    rules.add_argument("--json", action="store_true", help="Print rules as JSON")
    edit = rules.add_mutually_exclusive_group()
    edit.add_argument("--add", type=str, metavar="RULE_ID", help="Add a regex rule for this project")
    edit.add_argument("--remove", type=str, metavar="RULE_ID", help="Remove a rule added for this project")
    rules.add_argument("--pattern", type=str, help="Regex for --add")
    rules.add_argument(
        "--severity",
        choices=[s.value for s in Severity],
        default=Severity.WARNING.value,
        help="Severity for --add (default: warning)",
    )
    rules.add_argument("--name", type=str, help="Display name for --add")
    rules.add_argument("--description", type=str, help="Description for --add")
    rules.add_argument("--fix", type=str, help="Fix suggestion for --add")
    rules.add_argument("--project", type=str, help="Project name in the user rule file (default: repository directory name)")

    return parser


def load_registry(config: ProjectConfig) -> RuleRegistry:
    registry = RuleRegistry.load(
        user_rule_file=config.user_rule_file,
        project_rule_files=config.rule_files,
        project_root=config.root,
    )
    for warning in registry.warnings:
        logger.warning(warning)
    return registry


def read_diff_file(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def resolve_scope(args: argparse.Namespace) -> DiffScope:
    if args.staged:
        return DiffScope.staged()
    if args.unstaged:
        return DiffScope.unstaged()
    if args.since:
        return DiffScope.since(args.since)
    return DiffScope.head()


def format_violation(violation: Violation) -> str:
    location = f"{violation.file_path}:{violation.line_number}"
    if violation.column:
        location += f":{violation.column}"
    lines = [f"{location} [{violation.severity.value}] {violation.rule_id}: {violation.rule_name}"]
    if violation.line_content:
        lines.append(f"    > {violation.line_content.strip()}")
    if violation.fix_suggestion:
        lines.append(f"    fix: {violation.fix_suggestion}")
    return "\n".join(lines)


def print_report(report: ReviewReport, warnings: list[str], as_json: bool) -> None:
    if as_json:
        payload = report.to_dict()
        payload["warnings"] = warnings
        print(json.dumps(payload, indent=2))
        return

    for violation in report.violations:
        print(format_violation(violation))
    for warning in warnings:
        print(f"warning: {warning}", file=sys.stderr)

    print("\n" + "=" * 60)
    print(report.summary.to_markdown())
    print("=" * 60 + "\n")


def print_fix_report(fix_report: BatchFixReport, as_json: bool) -> None:
    if as_json:
        print(json.dumps(fix_report.to_dict(), indent=2))
        return
    for outcome in fix_report.outcomes:
        v = outcome.violation
        line = f"{outcome.status.value:>11}  {v.file_path}:{v.line_number} {v.rule_id}"
        if outcome.message:
            line += f" ({outcome.message})"
        print(line)
        if outcome.status == FixStatus.PROPOSED and outcome.result:
            print(f"    - {outcome.result.original_text.strip()}")
            for fixed in outcome.result.fixed_text.split("\n"):
                print(f"    + {fixed}")
    if fix_report.cancelled:
        print("Fixing cancelled; fixes already applied were kept.")
    print(f"{fix_report.applied} fixes applied, {len(fix_report.unfixed)} violations left unfixed")


def prompt_decision(violation: Violation, result: FixResult) -> FixDecision:
    """Ask on the terminal whether to apply a proposed fix."""
    print("\n" + format_violation(violation))
    print(f"    - {result.original_text.strip()}")
    for fixed in result.fixed_text.split("\n"):
        print(f"    + {fixed}")
    print(f"    confidence: {result.confidence:.2f}")
    try:
        answer = input("Apply fix? [y/N/a(ll)/q(uit)] ").strip().lower()
    except EOFError:
        return FixDecision.QUIT
    return DECISION_KEYS.get(answer, FixDecision.SKIP)


def build_fix_agent(config: ProjectConfig, repo_root: Path) -> Optional[FixAgent]:
    client = OllamaClient(
        model=config.fixer.model,
        host=config.fixer.host,
        timeout=config.fixer.timeout,
    )
    if not client.is_available():
        logger.warning("Ollama not available, AI fixing disabled")
        client.close()
        return None
    return FixAgent(
        fixer=client,
        repo_root=repo_root,
        timeout=config.fixer.timeout,
        confidence_threshold=config.fixer.confidence_threshold,
    )


def run_review(args: argparse.Namespace, config: ProjectConfig) -> int:
    registry = load_registry(config)
    review_agent = ReviewAgent(
        registry=registry,
        max_workers=config.max_workers,
        ignore_paths=config.ignore_paths,
        severity_thresholds=config.severity_thresholds,
        languages=[Language(lang) for lang in args.language] if args.language else None,
    )

    git_client = GitClient(config.root)
    fix_agent = None
    if args.fix or args.auto_fix:
        # git diff paths are relative to the top-level directory
        fix_root = config.root
        if not args.diff_file:
            try:
                fix_root = git_client.repo_root()
            except GitCommandError as e:
                logger.warning(f"Could not resolve repository root: {e}")
        fix_agent = build_fix_agent(config, fix_root)
    min_severity = Severity(args.severity) if args.severity else config.min_severity

    diff_text = ""
    if args.diff_file:
        try:
            diff_text = read_diff_file(args.diff_file)
        except OSError as e:
            logger.error(f"Cannot read diff file {args.diff_file}: {e}")
            return EXIT_FATAL

    orchestrator = ReviewOrchestrator(
        registry=registry,
        git_client=git_client,
        review_agent=review_agent,
        fix_agent=fix_agent,
        min_severity=min_severity,
        auto_fix=args.auto_fix,
        dry_run=args.dry_run,
        log_path=args.log,
    )
    final_state = orchestrator.run(resolve_scope(args), diff_text=diff_text)

    if final_state.get("fatal"):
        logger.error(final_state.get("error"))
        return EXIT_FATAL

    report = final_state["report"]
    logger.info(f"Review completed: {report.summary.total_violations} violations found")
    print_report(report, final_state.get("warnings", []), args.json)

    fix_report = final_state.get("fix_report")
    if args.fix and fix_agent is not None and report.summary.ai_fixable_count:
        files = {f.file_path: f for f in final_state["parsed"].files}
        fix_report = fix_agent.run_interactive(
            report.violations, prompt=prompt_decision, files=files, dry_run=args.dry_run,
        )
    if fix_report is not None:
        print_fix_report(fix_report, args.json)

    return EXIT_CRITICAL if report.has_critical else EXIT_OK


def edit_project_rules(args: argparse.Namespace, config: ProjectConfig) -> int:
    """Add or remove a per-project rule in the user rule file."""
    if config.user_rule_file is None:
        logger.error("No user rule file is configured (user_rule_file is null)")
        return EXIT_FATAL
    store = CustomRuleStore(config.user_rule_file)

    if args.remove:
        try:
            removed = store.remove_project_rule(config.root, args.remove, project_name=args.project)
        except ConfigError as e:
            logger.error(str(e))
            return EXIT_FATAL
        if not removed:
            logger.error(f"No project rule with id {args.remove!r} in {store.path}")
            return EXIT_FATAL
        print(f"Removed rule {args.remove}")
        return EXIT_OK

    if not args.language or not args.pattern:
        logger.error("--add needs --language and --pattern")
        return EXIT_FATAL
    raw_rule = {"id": args.add, "severity": args.severity, "pattern": args.pattern}
    if args.name:
        raw_rule["name"] = args.name
    if args.description:
        raw_rule["description"] = args.description
    if args.fix:
        raw_rule["fix_suggestion"] = args.fix
    try:
        rule = store.add_project_rule(config.root, Language(args.language), raw_rule, project_name=args.project)
    except (RuleLoadError, ConfigError) as e:
        logger.error(str(e))
        return EXIT_FATAL
    print(f"Added rule {rule.id} ({rule.language.value}) to {store.path}")
    return EXIT_OK


def run_rules(args: argparse.Namespace, config: ProjectConfig) -> int:
    if args.add or args.remove:
        return edit_project_rules(args, config)

    registry = load_registry(config)

    if args.detail:
        language = Language(args.language) if args.language else None
        rule = registry.find(args.detail, language)
        if rule is None:
            logger.error(f"No rule with id {args.detail!r}")
            return EXIT_FATAL
        if args.json:
            print(json.dumps(rule.to_dict(), indent=2))
            return EXIT_OK
        print(f"{rule.id} ({rule.language.value}, {rule.severity.value}, {rule.scope.value})")
        print(f"  {rule.name}")
        print(f"  {rule.description}")
        print(f"  detection: {rule.detection_type}")
        if rule.fix_suggestion:
            print(f"  fix: {rule.fix_suggestion}")
        print(f"  ai fixable: {'yes' if rule.ai_fixable else 'no'}")
        if not rule.enabled:
            print("  disabled")
        if rule.source_url:
            print(f"  source: {rule.source_url}")
        for example in rule.examples:
            print(f"\n  bad:  {example.bad}\n  good: {example.good}")
            if example.explanation:
                print(f"  why:  {example.explanation}")
        return EXIT_OK

    rules = registry.search(args.search) if args.search else registry.all_rules()
    if args.language:
        rules = [rule for rule in rules if rule.language.value == args.language]

    if args.json:
        print(json.dumps([rule.to_dict() for rule in rules], indent=2))
        return EXIT_OK

    current = None
    for rule in rules:
        if rule.language != current:
            current = rule.language
            print(f"\n{current.value}")
        marker = "*" if rule.ai_fixable else " "
        state = "" if rule.is_usable else "  (disabled)"
        print(f"  {marker} {rule.id:<40} {rule.severity.value:<8} {rule.name}{state}")
    print(f"\n{len(rules)} rules (* = AI fixable)")
    return EXIT_OK


def run(argv: Optional[list[str]] = None) -> int:
    """Parse arguments and dispatch; returns the process exit code."""
    args = build_parser().parse_args(argv)

    try:
        config = ProjectConfig.load(args.repo, args.config)
    except ConfigError as e:
        logger.error(str(e))
        return EXIT_FATAL

    if args.command == "review":
        return run_review(args, config)
    return run_rules(args, config)


def main():
    """Run diffwarden."""
    sys.exit(run())


if __name__ == "__main__":
    main()

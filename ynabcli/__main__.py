from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict, is_dataclass
from datetime import date, timedelta
from pathlib import Path
from secrets import token_hex
from typing import Any, Callable

from ynabcli import __version__
from ynabcli.api.client import YnabClient
from ynabcli.api.errors import ClassifiedError, ErrorKind, RetriesExhaustedError, YnabApiError
from ynabcli.api.executor import RequestExecutor
from ynabcli.api.models import Account, CategoryGroup, TransactionRequest
from ynabcli.config import (
    LOG_LEVELS,
    TOKEN_ENV_VAR,
    AppConfig,
    ConfigError,
    LoadedConfig,
    default_config_path,
    load_or_default,
    resolve_budget_id,
    resolve_token,
    save_config,
)
from ynabcli.money import dollars_to_milliunits, format_currency, format_month, month_start, parse_month
from ynabcli.obs.logging import LogSettings, build_logger, log_event
from ynabcli.obs.metrics import summarize_api_health

EXIT_OK = 0
EXIT_API_ERROR = 1
EXIT_USAGE_ERROR = 2

ACCOUNT_TYPES = ("checking", "savings", "creditCard", "cash", "lineOfCredit", "otherAsset", "otherLiability")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ynab", description="YNAB command-line client")
    parser.add_argument("--version", action="version", version=f"ynab {__version__}")
    parser.add_argument("--config", help="Path to config YAML (default: ~/.ynab/config.yaml)")
    parser.add_argument("--json", action="store_true", help="Output JSON instead of text")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        help="Logging level (default from config, WARNING)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    configure_parser = subparsers.add_parser("configure", help="Write the config file")
    configure_parser.add_argument("--token", help="Personal access token")
    configure_parser.add_argument("--budget-id", help="Default budget ID")
    configure_parser.add_argument("--base-url", help="API base URL")
    configure_parser.add_argument("--show", action="store_true", help="Show current config (token masked)")

    subparsers.add_parser("doctor", help="Check configuration and API connectivity")
    subparsers.add_parser("status", help="Show the default budget")
    subparsers.add_parser("budgets", help="List budgets")

    balance_parser = subparsers.add_parser("balance", help="Show account balances")
    balance_parser.add_argument("filter", nargs="?", help="Account name substring")

    subparsers.add_parser("categories", help="List categories for the current month")

    txn_parser = subparsers.add_parser("transactions", help="List transactions")
    txn_parser.add_argument("--since", help="Start date YYYY-MM-DD (default: 30 days ago)")
    txn_parser.add_argument("--account", help="Account name or ID")
    txn_parser.add_argument("--category", help="Category name or ID")
    txn_parser.add_argument("--payee", help="Payee name substring")
    txn_parser.add_argument("--limit", type=int, default=50, help="Max results")

    payees_parser = subparsers.add_parser("payees", help="List payees")
    payees_parser.add_argument("filter", nargs="?", help="Payee name substring")

    months_parser = subparsers.add_parser("months", help="List budget months or show one")
    months_parser.add_argument("month", nargs="?", help="YYYY-MM")

    subparsers.add_parser("scheduled", help="List scheduled transactions")

    add_parser = subparsers.add_parser("add", help="Create a transaction")
    add_parser.add_argument("amount", help="Amount; positive is spending unless prefixed with '+'")
    add_parser.add_argument("payee", help="Payee name")
    add_parser.add_argument("--category", help="Category name or ID")
    add_parser.add_argument("--account", help="Account name or ID (default: first on-budget)")
    add_parser.add_argument("--date", help="YYYY-MM-DD (default: today)")
    add_parser.add_argument("--memo", help="Memo")

    edit_parser = subparsers.add_parser("edit", help="Update a transaction")
    edit_parser.add_argument("transaction_id")
    edit_parser.add_argument("--amount", help="New signed amount; negative is spending")
    edit_parser.add_argument("--payee", help="New payee name")
    edit_parser.add_argument("--category", help="New category name or ID")
    edit_parser.add_argument("--memo", help="New memo")
    edit_parser.add_argument("--date", help="New date YYYY-MM-DD")
    edit_parser.add_argument("--cleared", action="store_true", help="Mark as cleared")

    delete_parser = subparsers.add_parser("delete", help="Delete a transaction")
    delete_parser.add_argument("transaction_id")

    set_parser = subparsers.add_parser("budget-set", help="Set the budgeted amount of a category")
    set_parser.add_argument("category", help="Category name or ID")
    set_parser.add_argument("amount", help="Budgeted amount")
    set_parser.add_argument("--month", help="YYYY-MM (default: current month)")

    move_parser = subparsers.add_parser("move", help="Move budgeted money between categories")
    move_parser.add_argument("amount", help="Amount to move")
    move_parser.add_argument("--from", dest="from_category", required=True, help="Source category")
    move_parser.add_argument("--to", dest="to_category", required=True, help="Target category")
    move_parser.add_argument("--month", help="YYYY-MM (default: current month)")

    account_parser = subparsers.add_parser("add-account", help="Create an account")
    account_parser.add_argument("name")
    account_parser.add_argument("type", choices=ACCOUNT_TYPES)
    account_parser.add_argument("balance", nargs="?", default="0", help="Starting balance")

    return parser.parse_args(argv)


def generate_session_id() -> str:
    return token_hex(4)


def describe_error(exc: YnabApiError) -> str:
    """Map an API error to the message shown on stderr."""
    kind = exc.kind if isinstance(exc, (ClassifiedError, RetriesExhaustedError)) else None
    if kind is ErrorKind.AUTH:
        return (
            "Unauthorized: invalid or missing access token.\n"
            f"Check your access token: run 'ynab configure --token ...' or set {TOKEN_ENV_VAR}."
        )
    return str(exc)


def _to_jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, list):
        return [_to_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _to_jsonable(item) for key, item in value.items()}
    return value


def _emit(as_json: bool, payload: Any, render: Callable[[], list[str]]) -> None:
    if as_json:
        print(json.dumps(_to_jsonable(payload), indent=2, ensure_ascii=False))
        return
    for line in render():
        print(line)


def _mask(token: str | None) -> str:
    if not token:
        return "(not set)"
    if len(token) <= 8:
        return "*" * len(token)
    return f"{token[:4]}...{token[-4:]}"


def _parse_amount(raw: str) -> int:
    try:
        return dollars_to_milliunits(raw)
    except ValueError as exc:
        raise ValueError(f"invalid amount: {raw} (expected decimal number like 50.00)") from exc


def _parse_date(raw: str) -> str:
    try:
        return date.fromisoformat(raw).isoformat()
    except ValueError as exc:
        raise ValueError(f"invalid date format: {raw} (expected YYYY-MM-DD)") from exc


def find_account(accounts: list[Account], query: str | None) -> Account:
    active = [account for account in accounts if account.is_active]
    if not query:
        for account in active:
            if account.on_budget:
                return account
        raise ValueError("no open on-budget account found")
    lowered = query.lower()
    for account in active:
        if account.id == query or account.name.lower() == lowered:
            return account
    matches = [account for account in active if lowered in account.name.lower()]
    if len(matches) == 1:
        return matches[0]
    if matches:
        names = ", ".join(account.name for account in matches)
        raise ValueError(f"account '{query}' is ambiguous: {names}")
    raise ValueError(f"account not found: {query}")


def find_category(groups: list[CategoryGroup], query: str) -> tuple[str, str]:
    lowered = query.lower()
    candidates = [
        category
        for group in groups
        if not group.deleted
        for category in group.categories
        if not category.deleted
    ]
    for category in candidates:
        if category.id == query or category.name.lower() == lowered:
            return category.id, category.name
    matches = [category for category in candidates if lowered in category.name.lower()]
    if len(matches) == 1:
        return matches[0].id, matches[0].name
    if matches:
        names = ", ".join(category.name for category in matches)
        raise ValueError(f"category '{query}' is ambiguous: {names}")
    raise ValueError(f"category not found: {query}")


def cmd_configure(args: argparse.Namespace, loaded: LoadedConfig, config_path: Path) -> int:
    config = loaded.config
    if args.show:
        payload = {
            "path": str(config_path),
            "exists": config_path.exists(),
            "access_token": _mask(config.auth.access_token),
            "default_budget_id": config.auth.default_budget_id,
            "api_base_url": config.api.base_url,
        }
        _emit(args.json, payload, lambda: [f"{key}: {value}" for key, value in payload.items()])
        return EXIT_OK

    if not (args.token or args.budget_id or args.base_url):
        raise ValueError("configure requires --token, --budget-id, --base-url or --show")

    updated = config.model_dump()
    if args.token:
        updated["auth"]["access_token"] = args.token
    if args.budget_id:
        updated["auth"]["default_budget_id"] = args.budget_id
    if args.base_url:
        updated["api"]["base_url"] = args.base_url
    try:
        new_config = AppConfig.model_validate(updated)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    path = save_config(new_config, config_path)
    _emit(args.json, {"path": str(path), "saved": True}, lambda: [f"Configuration saved to {path}"])
    return EXIT_OK


def cmd_doctor(args: argparse.Namespace, client: YnabClient | None, config_path: Path) -> int:
    checks: dict[str, Any] = {
        "config_file": config_path.exists(),
        "access_token": client is not None,
    }
    exit_code = EXIT_OK
    if client is None:
        exit_code = EXIT_USAGE_ERROR
    else:
        try:
            budgets = client.get_budgets()
        except YnabApiError as exc:
            checks["api"] = describe_error(exc)
            exit_code = EXIT_API_ERROR
        else:
            checks["api"] = "ok"
            checks["budgets"] = len(budgets)
        checks["health"] = summarize_api_health(client.executor.metrics)

    def render() -> list[str]:
        lines = []
        for key, value in checks.items():
            if key == "health":
                lines.append(f"api_health: {value['api_health']} ({value['requests_total']} requests)")
            else:
                lines.append(f"{key}: {value}")
        return lines

    _emit(args.json, checks, render)
    return exit_code


def cmd_status(args: argparse.Namespace, client: YnabClient) -> int:
    budget_id = client.get_default_budget_id()
    budget = next((item for item in client.get_budgets() if item.id == budget_id), None)
    if budget is None:
        raise ValueError(f"budget {budget_id} not found")

    accounts = budget.accounts or []
    on_budget = [account for account in accounts if account.on_budget and account.is_active]
    payload = {
        "budget_id": budget.id,
        "budget_name": budget.name,
        "last_modified": budget.last_modified_on,
        "first_month": budget.first_month,
        "last_month": budget.last_month,
        "currency_code": budget.currency_format.iso_code if budget.currency_format else None,
        "account_count": len(accounts),
    }

    def render() -> list[str]:
        lines = [f"Budget: {budget.name}", f"ID: {budget.id}"]
        if budget.last_modified_on:
            lines.append(f"Last Modified: {budget.last_modified_on[:10]}")
        for label, value in (("First Month", budget.first_month), ("Last Month", budget.last_month)):
            if value:
                lines.append(f"{label}: {format_month(*parse_month(value))}")
        if budget.currency_format:
            fmt = budget.currency_format
            lines.append(f"Currency: {fmt.iso_code} ({fmt.currency_symbol})")
        if budget.accounts is not None:
            lines.append(f"Accounts: {len(accounts)} total, {len(on_budget)} on-budget")
        return lines

    _emit(args.json, payload, render)
    return EXIT_OK


def cmd_budgets(args: argparse.Namespace, client: YnabClient) -> int:
    budgets = client.get_budgets()
    _emit(args.json, budgets, lambda: [f"{budget.id}  {budget.name}" for budget in budgets])
    return EXIT_OK


def cmd_balance(args: argparse.Namespace, client: YnabClient) -> int:
    accounts = [account for account in client.get_accounts() if account.is_active]
    if args.filter:
        lowered = args.filter.lower()
        accounts = [account for account in accounts if lowered in account.name.lower()]
    total = sum(account.balance for account in accounts if account.on_budget)

    def render() -> list[str]:
        if not accounts:
            return ["No accounts found."]
        width = max(len(account.name) for account in accounts)
        lines = [f"{'Account':<{width}}  {'Type':<14}  {'Balance':>15}", "-" * (width + 33)]
        for account in accounts:
            lines.append(f"{account.name:<{width}}  {account.type:<14}  {format_currency(account.balance):>15}")
        lines.append("-" * (width + 33))
        lines.append(f"{'On-budget total':<{width}}  {'':<14}  {format_currency(total):>15}")
        return lines

    _emit(args.json, {"accounts": accounts, "on_budget_total": total}, render)
    return EXIT_OK


def cmd_categories(args: argparse.Namespace, client: YnabClient) -> int:
    groups = [group for group in client.get_categories() if not group.hidden and not group.deleted]

    def render() -> list[str]:
        lines = []
        for group in groups:
            lines.append(group.name)
            for category in group.categories:
                if category.hidden or category.deleted:
                    continue
                lines.append(
                    f"  {category.name:<30} budgeted {format_currency(category.budgeted):>12}"
                    f"  available {format_currency(category.balance):>12}"
                )
        return lines or ["No categories found."]

    _emit(args.json, groups, render)
    return EXIT_OK


def cmd_transactions(args: argparse.Namespace, client: YnabClient) -> int:
    since = _parse_date(args.since) if args.since else (date.today() - timedelta(days=30)).isoformat()
    if args.account:
        account = find_account(client.get_accounts(), args.account)
        transactions = client.get_transactions_by_account(account.id, since_date=since)
    elif args.category:
        category_id, _name = find_category(client.get_categories(), args.category)
        transactions = client.get_transactions_by_category(category_id, since_date=since)
    else:
        transactions = client.get_transactions(since_date=since)

    transactions = [txn for txn in transactions if not txn.deleted]
    if args.payee:
        lowered = args.payee.lower()
        transactions = [txn for txn in transactions if lowered in (txn.payee_name or "").lower()]
    transactions.sort(key=lambda txn: txn.date, reverse=True)
    if args.limit > 0:
        transactions = transactions[: args.limit]

    def render() -> list[str]:
        if not transactions:
            return [f"No transactions since {since}."]
        return [
            f"{txn.date}  {format_currency(txn.amount):>12}  {(txn.payee_name or '')[:28]:<28}"
            f"  {(txn.category_name or '')[:24]:<24}  {txn.id}"
            for txn in transactions
        ]

    _emit(args.json, transactions, render)
    return EXIT_OK


def cmd_payees(args: argparse.Namespace, client: YnabClient) -> int:
    payees = [payee for payee in client.get_payees() if not payee.deleted]
    if args.filter:
        lowered = args.filter.lower()
        payees = [payee for payee in payees if lowered in payee.name.lower()]
    payees.sort(key=lambda payee: payee.name.lower())
    _emit(args.json, payees, lambda: [payee.name for payee in payees] or ["No payees found."])
    return EXIT_OK


def cmd_months(args: argparse.Namespace, client: YnabClient) -> int:
    if args.month:
        month = client.get_month(month_start(args.month))

        def render_one() -> list[str]:
            lines = [
                f"Month: {month.month[:7]}",
                f"Income: {format_currency(month.income)}",
                f"Budgeted: {format_currency(month.budgeted)}",
                f"Activity: {format_currency(month.activity)}",
                f"To Be Budgeted: {format_currency(month.to_be_budgeted)}",
            ]
            if month.age_of_money is not None:
                lines.append(f"Age of Money: {month.age_of_money} days")
            return lines

        _emit(args.json, month, render_one)
        return EXIT_OK

    months = [month for month in client.get_months() if not month.deleted]
    _emit(
        args.json,
        months,
        lambda: [
            f"{month.month[:7]}  income {format_currency(month.income):>12}"
            f"  budgeted {format_currency(month.budgeted):>12}"
            f"  to be budgeted {format_currency(month.to_be_budgeted):>12}"
            for month in months
        ],
    )
    return EXIT_OK


def cmd_scheduled(args: argparse.Namespace, client: YnabClient) -> int:
    scheduled = [item for item in client.get_scheduled_transactions() if not item.deleted]
    scheduled.sort(key=lambda item: item.date_next)
    _emit(
        args.json,
        scheduled,
        lambda: [
            f"{item.date_next}  {item.frequency:<14}  {format_currency(item.amount):>12}  {item.payee_name or ''}"
            for item in scheduled
        ]
        or ["No scheduled transactions."],
    )
    return EXIT_OK


def cmd_add(args: argparse.Namespace, client: YnabClient) -> int:
    amount = _parse_amount(args.amount)
    # Users type "50" for spending; "+50" is an inflow.
    if amount > 0 and not args.amount.startswith("+"):
        amount = -amount
    txn_date = _parse_date(args.date) if args.date else date.today().isoformat()
    account = find_account(client.get_accounts(), args.account)
    category_id = None
    if args.category:
        category_id, _name = find_category(client.get_categories(), args.category)

    request = TransactionRequest(
        account_id=account.id,
        date=txn_date,
        amount=amount,
        payee_name=args.payee,
        category_id=category_id,
        memo=args.memo,
        cleared="uncleared",
        approved=True,
    )
    txn = client.create_transaction(request)
    _emit(
        args.json,
        txn,
        lambda: [f"Added {format_currency(txn.amount)} to {args.payee} on {txn.date} ({account.name}) [{txn.id}]"],
    )
    return EXIT_OK


def cmd_edit(args: argparse.Namespace, client: YnabClient) -> int:
    fields: dict[str, Any] = {}
    if args.amount is not None:
        fields["amount"] = _parse_amount(args.amount)
    if args.payee is not None:
        fields["payee_name"] = args.payee
    if args.category is not None:
        fields["category_id"], _name = find_category(client.get_categories(), args.category)
    if args.memo is not None:
        fields["memo"] = args.memo
    if args.date is not None:
        fields["date"] = _parse_date(args.date)
    if args.cleared:
        fields["cleared"] = "cleared"
    if not fields:
        raise ValueError("edit requires at least one of --amount, --payee, --category, --memo, --date, --cleared")

    txn = client.update_transaction(args.transaction_id, fields)
    _emit(args.json, txn, lambda: [f"Updated transaction {txn.id}: {txn.date} {format_currency(txn.amount)}"])
    return EXIT_OK


def cmd_delete(args: argparse.Namespace, client: YnabClient) -> int:
    txn = client.delete_transaction(args.transaction_id)
    _emit(args.json, txn, lambda: [f"Deleted transaction {txn.id}"])
    return EXIT_OK


def cmd_budget_set(args: argparse.Namespace, client: YnabClient) -> int:
    month = month_start(args.month)
    category_id, name = find_category(client.get_categories(), args.category)
    category = client.update_category_budget(category_id, _parse_amount(args.amount), month=month)
    _emit(
        args.json,
        category,
        lambda: [f"{name} ({month[:7]}): budgeted {format_currency(category.budgeted)}"],
    )
    return EXIT_OK


def cmd_move(args: argparse.Namespace, client: YnabClient) -> int:
    amount = abs(_parse_amount(args.amount))
    month_key = month_start(args.month)
    month = client.get_month(month_key)
    groups = [CategoryGroup(id="month", name=month.month, categories=month.categories)]
    from_id, from_name = find_category(groups, args.from_category)
    to_id, to_name = find_category(groups, args.to_category)
    if from_id == to_id:
        raise ValueError("--from and --to must be different categories")

    by_id = {category.id: category for category in month.categories}
    source = client.update_category_budget(from_id, by_id[from_id].budgeted - amount, month=month_key)
    target = client.update_category_budget(to_id, by_id[to_id].budgeted + amount, month=month_key)
    _emit(
        args.json,
        {"amount": amount, "month": month_key, "from": source, "to": target},
        lambda: [
            f"Moved {format_currency(amount)} from '{from_name}' to '{to_name}' ({month_key[:7]})",
            f"  {from_name}: {format_currency(by_id[from_id].budgeted)} -> {format_currency(source.budgeted)}",
            f"  {to_name}: {format_currency(by_id[to_id].budgeted)} -> {format_currency(target.budgeted)}",
        ],
    )
    return EXIT_OK


def cmd_add_account(args: argparse.Namespace, client: YnabClient) -> int:
    account = client.create_account(args.name, args.type, _parse_amount(args.balance))
    _emit(
        args.json,
        account,
        lambda: [f"Created {account.type} account '{account.name}' ({format_currency(account.balance)}) [{account.id}]"],
    )
    return EXIT_OK


COMMANDS: dict[str, Callable[[argparse.Namespace, YnabClient], int]] = {
    "status": cmd_status,
    "budgets": cmd_budgets,
    "balance": cmd_balance,
    "categories": cmd_categories,
    "transactions": cmd_transactions,
    "payees": cmd_payees,
    "months": cmd_months,
    "scheduled": cmd_scheduled,
    "add": cmd_add,
    "edit": cmd_edit,
    "delete": cmd_delete,
    "budget-set": cmd_budget_set,
    "move": cmd_move,
    "add-account": cmd_add_account,
}


def build_client(config: AppConfig, logger: logging.Logger) -> YnabClient | None:
    token = resolve_token(config)
    if not token:
        return None
    executor = RequestExecutor(config.api, token, logger=logger)
    return YnabClient(executor, default_budget_id=resolve_budget_id(config))


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    config_path = Path(args.config).expanduser() if args.config else default_config_path()

    try:
        loaded = load_or_default(config_path)
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_USAGE_ERROR

    logger = build_logger(
        LogSettings(
            level=(args.log_level or loaded.config.obs.log_level).upper(),
            session_id=generate_session_id(),
            log_file=None,
            jsonl=loaded.config.obs.log_jsonl,
        )
    )

    if args.command == "configure":
        try:
            return cmd_configure(args, loaded, config_path)
        except (ConfigError, ValueError) as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return EXIT_USAGE_ERROR

    client = build_client(loaded.config, logger)
    if args.command == "doctor":
        try:
            return cmd_doctor(args, client, config_path)
        finally:
            if client is not None:
                client.close()

    if client is None:
        print(
            f"Error: no access token found\n\nRun 'ynab configure --token ...' or set {TOKEN_ENV_VAR}",
            file=sys.stderr,
        )
        return EXIT_USAGE_ERROR

    handler = COMMANDS.get(args.command)
    if handler is None:
        raise ValueError(f"Unsupported command: {args.command}")

    log_event(logger, logging.DEBUG, "command_started", f"Running {args.command}", command=args.command)
    try:
        return handler(args, client)
    except YnabApiError as exc:
        print(f"Error: {describe_error(exc)}", file=sys.stderr)
        return EXIT_API_ERROR
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_USAGE_ERROR
    finally:
        log_event(
            logger,
            logging.DEBUG,
            "command_complete",
            f"{args.command} finished",
            command=args.command,
            **summarize_api_health(client.executor.metrics),
        )
        client.close()


if __name__ == "__main__":
    raise SystemExit(main())

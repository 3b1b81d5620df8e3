"""Index provisioning and search health-check commands.

Both commands exit 0 when the store answered, even if some indexes conflict or
are missing, and exit 2 when the store cannot be reached.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Optional, Sequence, TextIO

from academyhub.domain.search import models
from academyhub.domain.search.capabilities import CapabilityProber
from academyhub.domain.search.indexes import INDEX_DESCRIPTORS, IndexProvisioner
from academyhub.infra.store import CollectionStore, StoreConnectionError, close_store, init_store

_LOG = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNREACHABLE = 2


def provision_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(description="Create the text and secondary indexes used by search")
	parser.add_argument(
		"--collection",
		action="append",
		dest="collections",
		metavar="NAME",
		help="Limit provisioning to this collection (repeatable)",
	)
	parser.add_argument("--json", action="store_true", dest="as_json", help="Print a JSON summary")
	return parser


def check_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(description="Report which search strategy each collection can use")
	parser.add_argument("--repair", action="store_true", help="Create missing weighted text indexes")
	parser.add_argument("--json", action="store_true", dest="as_json", help="Print a JSON report")
	return parser


def recommendation(report: models.CapabilityReport) -> str:
	capability = report.capability
	if capability is models.SearchCapability.MANAGED_FULL_TEXT:
		missing = [probe.name for probe in report.managed if not probe.available]
		if missing:
			return "managed search active; missing " + ", ".join(missing)
		return "managed search active"
	if capability is models.SearchCapability.BASIC_WEIGHTED_TEXT:
		if report.managed:
			names = ", ".join(probe.name for probe in report.managed)
			return f"weighted text search active; create managed indexes ({names}) for fuzzy matching and autocomplete"
		return "weighted text search active"
	return "no text index; search runs in degraded substring mode, run scripts/create_indexes.py"


def _print_provision(results: Sequence[models.ProvisionResult], out: TextIO) -> None:
	for result in results:
		status = "ok" if not result.failures else ("conflict" if result.conflicts else "failed")
		print(
			f"{result.collection}: {status} created={len(result.created)} "
			f"skipped={len(result.skipped)} failures={len(result.failures)}",
			file=out,
		)
		for failure in result.failures:
			label = "conflict" if failure.conflict else "error"
			print(f"  {label} {failure.name}: {failure.message}", file=out)


def _print_check(reports: dict[str, models.CapabilityReport], repaired: dict[str, models.ProvisionResult], out: TextIO) -> None:
	for collection, report in reports.items():
		print(f"{collection}: {report.capability.value}", file=out)
		for probe in report.managed:
			state = "available" if probe.available else f"unavailable ({probe.error or 'not found'})"
			print(f"  managed {probe.name}: {state}", file=out)
		print(f"  text index: {report.text_index or 'missing'}", file=out)
		if collection in repaired:
			result = repaired[collection]
			print(f"  repair: created={','.join(result.created) or '-'} error={result.error or '-'}", file=out)
		print(f"  recommendation: {recommendation(report)}", file=out)


async def provision(
	store: CollectionStore,
	collections: Optional[Sequence[str]] = None,
	*,
	as_json: bool = False,
	out: Optional[TextIO] = None,
) -> int:
	out = out or sys.stdout
	prober = CapabilityProber(store)
	try:
		await store.ping()
		results = await IndexProvisioner(store, prober=prober).ensure_all(collections)
	except StoreConnectionError as exc:
		_LOG.error("search.index.store_unreachable", extra={"error": str(exc)})
		print(f"store unreachable: {exc}", file=sys.stderr)
		return EXIT_UNREACHABLE
	if as_json:
		print(json.dumps({"results": [result.as_dict() for result in results]}, indent=2), file=out)
	else:
		_print_provision(results, out)
	return EXIT_OK


async def check(
	store: CollectionStore,
	*,
	repair: bool = False,
	as_json: bool = False,
	out: Optional[TextIO] = None,
) -> int:
	out = out or sys.stdout
	prober = CapabilityProber(store, ttl_seconds=0)
	repaired: dict[str, models.ProvisionResult] = {}
	try:
		await store.ping()
		reports = await prober.check_all(refresh=True)
		if repair:
			provisioner = IndexProvisioner(store, prober=prober)
			for collection, report in reports.items():
				if report.text_index or collection not in INDEX_DESCRIPTORS:
					continue
				repaired[collection] = await provisioner.ensure_text_index(collection)
			if repaired:
				reports = await prober.check_all(refresh=True)
	except StoreConnectionError as exc:
		_LOG.error("search.capability.store_unreachable", extra={"error": str(exc)})
		print(f"store unreachable: {exc}", file=sys.stderr)
		return EXIT_UNREACHABLE
	if as_json:
		payload: dict[str, Any] = {
			"collections": {
				name: {**report.as_dict(), "recommendation": recommendation(report)}
				for name, report in reports.items()
			},
			"repaired": {name: result.as_dict() for name, result in repaired.items()},
		}
		print(json.dumps(payload, indent=2), file=out)
	else:
		_print_check(reports, repaired, out)
	return EXIT_OK


async def provision_main(argv: Optional[Sequence[str]] = None) -> int:
	args = provision_parser().parse_args(argv)
	store = await init_store()
	try:
		return await provision(store, args.collections, as_json=args.as_json)
	finally:
		await close_store()


async def check_main(argv: Optional[Sequence[str]] = None) -> int:
	args = check_parser().parse_args(argv)
	store = await init_store()
	try:
		return await check(store, repair=args.repair, as_json=args.as_json)
	finally:
		await close_store()

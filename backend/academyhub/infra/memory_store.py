"""In-process document store used by tests and STORE_BACKEND=memory runs.

Implements the same collection-store contract as the MongoDB adapter with the
subset of query, pipeline and index semantics the search core relies on:
weighted text indexes (one per collection, scored per matched term and field
weight), Mongo-like index conflict rules, unique indexes, and registered
managed search indexes answering ``$search`` stages with fuzzy scoring.
"""

from __future__ import annotations

import asyncio
import copy
import functools
import re
from datetime import datetime
from difflib import SequenceMatcher
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from bson import ObjectId

from academyhub.infra.store import (
	DUPLICATE_KEY,
	INDEX_KEY_SPECS_CONFLICT,
	INDEX_NOT_FOUND,
	INDEX_OPTIONS_CONFLICT,
	SEARCH_NOT_ENABLED,
	Document,
	SortSpec,
	StoreConnectionError,
	StoreOperationError,
)

_MISSING = object()
_META = "\x00meta"
_TOKEN_RE = re.compile(r"[a-z0-9]+")
_STOP_WORDS = frozenset(
	{"a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "in", "is", "it", "of", "on", "or", "the", "to", "with"}
)
_FTS_KEY = {"_fts": "text", "_ftsx": 1}


def _tokens(text: str) -> list[str]:
	return _TOKEN_RE.findall(text.lower())


def _stem(token: str) -> str:
	if len(token) > 4 and token.endswith("ies"):
		return token[:-3] + "y"
	if len(token) > 5 and token.endswith("ing"):
		return token[:-3]
	if len(token) > 4 and token.endswith("ed"):
		return token[:-2]
	if len(token) > 3 and token.endswith("s") and not token.endswith("ss"):
		return token[:-1]
	return token


def _terms(text: str) -> list[str]:
	return [_stem(token) for token in _tokens(text) if token not in _STOP_WORDS]


def _strings(value: Any) -> list[str]:
	if isinstance(value, str):
		return [value]
	if isinstance(value, (list, tuple)):
		return [item for item in value if isinstance(item, str)]
	return []


def _get(doc: Any, path: str) -> Any:
	current = doc
	for part in path.split("."):
		if isinstance(current, Mapping):
			current = current.get(part, _MISSING)
		elif isinstance(current, list):
			collected = [item.get(part, _MISSING) for item in current if isinstance(item, Mapping)]
			collected = [item for item in collected if item is not _MISSING]
			current = collected if collected else _MISSING
		else:
			return _MISSING
		if current is _MISSING:
			return _MISSING
	return current


def _set(doc: dict, path: str, value: Any) -> None:
	parts = path.split(".")
	current = doc
	for part in parts[:-1]:
		nxt = current.get(part)
		if not isinstance(nxt, dict):
			nxt = {}
			current[part] = nxt
		current = nxt
	current[parts[-1]] = value


def _unset(doc: dict, path: str) -> None:
	parts = path.split(".")
	current = doc
	for part in parts[:-1]:
		current = current.get(part)
		if not isinstance(current, dict):
			return
	current.pop(parts[-1], None)


def _candidates(value: Any) -> list[Any]:
	if value is _MISSING:
		return [None]
	if isinstance(value, list):
		return [value, *value]
	return [value]


def _type_rank(value: Any) -> int:
	if value is None or value is _MISSING:
		return 0
	if isinstance(value, bool):
		return 6
	if isinstance(value, (int, float)):
		return 1
	if isinstance(value, str):
		return 2
	if isinstance(value, Mapping):
		return 3
	if isinstance(value, list):
		return 4
	if isinstance(value, ObjectId):
		return 5
	if isinstance(value, datetime):
		return 7
	return 8


def _compare(a: Any, b: Any) -> int:
	ra, rb = _type_rank(a), _type_rank(b)
	if ra != rb:
		return -1 if ra < rb else 1
	if ra == 0:
		return 0
	try:
		return (a > b) - (a < b)
	except TypeError:
		return 0


def _comparable(a: Any, b: Any) -> bool:
	return a is not None and b is not None and _type_rank(a) == _type_rank(b)


def _regex(pattern: Any, options: str = "") -> re.Pattern:
	if isinstance(pattern, re.Pattern):
		return pattern
	flags = re.IGNORECASE if "i" in options else 0
	return re.compile(str(pattern), flags)


def _match_operator(value: Any, op: str, arg: Any, spec: Mapping[str, Any]) -> bool:
	values = _candidates(value)
	match op:
		case "$eq":
			return any(_equal(item, arg) for item in values)
		case "$ne":
			return not any(_equal(item, arg) for item in values)
		case "$gt" | "$gte" | "$lt" | "$lte":
			for item in values:
				if not _comparable(item, arg):
					continue
				cmp = _compare(item, arg)
				if (op == "$gt" and cmp > 0) or (op == "$gte" and cmp >= 0) or (op == "$lt" and cmp < 0) or (op == "$lte" and cmp <= 0):
					return True
			return False
		case "$in":
			return any(_equal(item, target) for item in values for target in arg)
		case "$nin":
			return not any(_equal(item, target) for item in values for target in arg)
		case "$exists":
			return (value is not _MISSING) == bool(arg)
		case "$regex":
			pattern = _regex(arg, spec.get("$options", ""))
			return any(isinstance(item, str) and pattern.search(item) for item in values)
		case "$options":
			return True
		case "$all":
			return all(any(_equal(item, target) for item in values) for target in arg)
		case "$size":
			return isinstance(value, list) and len(value) == arg
		case "$not":
			return not _match_field(value, arg)
		case _:
			raise StoreOperationError(f"unknown operator: {op}", code=2, code_name="BadValue")


def _equal(item: Any, target: Any) -> bool:
	if isinstance(target, re.Pattern):
		return isinstance(item, str) and bool(target.search(item))
	if target is None:
		return item is None
	if _type_rank(item) != _type_rank(target):
		return False
	return item == target


def _match_field(value: Any, condition: Any) -> bool:
	if isinstance(condition, Mapping) and condition and all(str(key).startswith("$") for key in condition):
		return all(_match_operator(value, op, arg, condition) for op, arg in condition.items())
	return any(_equal(item, condition) for item in _candidates(value))


def _matches(doc: Mapping[str, Any], filter: Mapping[str, Any], text_score: Callable[[Mapping[str, Any]], float]) -> bool:
	for key, condition in filter.items():
		match key:
			case "$and":
				if not all(_matches(doc, sub, text_score) for sub in condition):
					return False
			case "$or":
				if not any(_matches(doc, sub, text_score) for sub in condition):
					return False
			case "$nor":
				if any(_matches(doc, sub, text_score) for sub in condition):
					return False
			case "$text":
				if text_score(doc) <= 0:
					return False
			case _:
				if not _match_field(_get(doc, key), condition):
					return False
	return True


def _eval(doc: Mapping[str, Any], expr: Any) -> Any:
	if isinstance(expr, str) and expr.startswith("$"):
		value = _get(doc, expr[1:])
		return None if value is _MISSING else value
	if isinstance(expr, Mapping):
		if "$meta" in expr:
			meta = doc.get(_META, {})
			return meta.get(expr["$meta"], 0.0)
		if "$ifNull" in expr:
			for item in expr["$ifNull"]:
				value = _eval(doc, item)
				if value is not None:
					return value
			return None
		if "$size" in expr:
			value = _eval(doc, expr["$size"])
			return len(value) if isinstance(value, list) else 0
		if "$toString" in expr:
			value = _eval(doc, expr["$toString"])
			return None if value is None else str(value)
		return {key: _eval(doc, value) for key, value in expr.items()}
	return expr


def _project(doc: Mapping[str, Any], projection: Mapping[str, Any]) -> Document:
	if not projection:
		return copy.deepcopy(dict(doc))
	include = {key: value for key, value in projection.items() if key != "_id"}
	inclusive = any(not (value in (0, False)) for value in include.values())
	if inclusive:
		out: Document = {}
		if projection.get("_id", 1) not in (0, False) and "_id" in doc:
			out["_id"] = doc["_id"]
		for key, value in include.items():
			if value in (0, False):
				continue
			if value in (1, True):
				found = _get(doc, key)
				if found is not _MISSING:
					_set(out, key, copy.deepcopy(found))
			else:
				_set(out, key, _eval(doc, value))
		if _META in doc:
			out[_META] = doc[_META]
		return out
	out = copy.deepcopy(dict(doc))
	for key, value in projection.items():
		if value in (0, False):
			_unset(out, key)
	return out


def _sort_docs(docs: list[Document], sort: SortSpec) -> list[Document]:
	keys = list(sort)

	def sort_value(doc: Document, field: str, direction: Any) -> Any:
		if isinstance(direction, Mapping) and "$meta" in direction:
			return doc.get(_META, {}).get(direction["$meta"], 0.0)
		value = _get(doc, field)
		if isinstance(value, list) and value:
			ordered = sorted(value, key=functools.cmp_to_key(_compare))
			return ordered[0] if direction == 1 else ordered[-1]
		return value

	def cmp(a: Document, b: Document) -> int:
		for field, direction in keys:
			result = _compare(sort_value(a, field, direction), sort_value(b, field, direction))
			if result:
				if isinstance(direction, Mapping) or direction == -1:
					return -result
				return result
		return 0

	return sorted(docs, key=functools.cmp_to_key(cmp))


def _strip(doc: Document) -> Document:
	doc.pop(_META, None)
	return doc


def _with_meta(doc: Document, **values: float) -> Document:
	meta = dict(doc.get(_META, {}))
	meta.update(values)
	doc[_META] = meta
	return doc


def _index_name(keys: SortSpec) -> str:
	return "_".join(f"{field}_{direction}" for field, direction in keys)


def _normalise_keys(keys: SortSpec) -> dict[str, Any]:
	if any(direction == "text" for _, direction in keys):
		out: dict[str, Any] = {}
		for field, direction in keys:
			if direction != "text":
				out[field] = direction
		out.update(_FTS_KEY)
		return out
	return {field: direction for field, direction in keys}


class _Collection:
	def __init__(self) -> None:
		self.docs: list[Document] = []
		self.indexes: dict[str, Document] = {"_id_": {"v": 2, "key": {"_id": 1}, "name": "_id_"}}
		self.search_indexes: dict[str, Document] = {}

	def text_index(self) -> Optional[Document]:
		for index in self.indexes.values():
			if "textIndexVersion" in index:
				return index
		return None


class MemoryCollectionStore:
	"""Async in-memory implementation of ``CollectionStore``."""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._collections: dict[str, _Collection] = {}
		self.offline = False
		self.managed_search_enabled = True

	async def reset(self) -> None:
		async with self._lock:
			self._collections.clear()
			self.offline = False
			self.managed_search_enabled = True

	async def seed(self, collection: str, documents: Iterable[Mapping[str, Any]]) -> list[Any]:
		"""Insert documents directly, assigning ``_id`` where absent."""

		return await self.insert_many(collection, [dict(doc) for doc in documents])

	def set_offline(self, offline: bool = True) -> None:
		self.offline = offline

	async def define_search_index(
		self,
		collection: str,
		name: str,
		*,
		kind: str = "search",
		paths: Optional[Sequence[str]] = None,
	) -> None:
		"""Register a managed search index answering ``$search`` stages."""

		async with self._lock:
			self._coll(collection).search_indexes[name] = {"name": name, "kind": kind, "paths": list(paths or [])}

	async def drop_search_index(self, collection: str, name: str) -> None:
		async with self._lock:
			self._coll(collection).search_indexes.pop(name, None)

	def _coll(self, name: str) -> _Collection:
		coll = self._collections.get(name)
		if coll is None:
			coll = _Collection()
			self._collections[name] = coll
		return coll

	def _check(self) -> None:
		if self.offline:
			raise StoreConnectionError("No servers available: memory store offline")

	# ------------------------------------------------------------------ text

	def _text_scorer(self, coll: _Collection, filter: Mapping[str, Any]) -> Callable[[Mapping[str, Any]], float]:
		text = filter.get("$text") if isinstance(filter, Mapping) else None
		if text is None:
			return lambda doc: 0.0
		index = coll.text_index()
		if index is None:
			raise StoreOperationError("text index required for $text query", code=INDEX_NOT_FOUND, code_name="IndexNotFound")
		raw = str(text.get("$search", "")) if isinstance(text, Mapping) else str(text)
		query_terms = {term for term in _terms(raw.replace('"', " ")) if term}
		weights: Mapping[str, int] = index.get("weights", {})

		def score(doc: Mapping[str, Any]) -> float:
			total = 0.0
			for field, weight in weights.items():
				value = _get(doc, field)
				field_terms: list[str] = []
				for chunk in _strings(value if value is not _MISSING else None):
					field_terms.extend(_terms(chunk))
				if not field_terms:
					continue
				for term in query_terms:
					freq = field_terms.count(term)
					if freq:
						total += weight * (0.5 * freq / len(field_terms) + 0.5)
			return total

		return score

	def _filter(self, coll: _Collection, filter: Optional[Mapping[str, Any]]) -> list[Document]:
		filter = dict(filter or {})
		scorer = self._text_scorer(coll, filter)
		out: list[Document] = []
		for doc in coll.docs:
			if not _matches(doc, filter, scorer):
				continue
			row = copy.deepcopy(doc)
			if "$text" in filter:
				_with_meta(row, textScore=scorer(doc))
			out.append(row)
		return out

	# ---------------------------------------------------------------- search

	def _search_stage(self, coll: _Collection, spec: Mapping[str, Any]) -> list[Document]:
		if not self.managed_search_enabled:
			raise StoreOperationError(
				"$search stage is only allowed on managed search deployments",
				code=SEARCH_NOT_ENABLED,
				code_name="SearchNotEnabled",
			)
		name = spec.get("index", "default")
		index = coll.search_indexes.get(name)
		if index is None:
			raise StoreOperationError(f"search index '{name}' not found", code=INDEX_NOT_FOUND, code_name="IndexNotFound")
		rows: list[Document] = []
		for doc in coll.docs:
			score = self._score_operator(doc, spec, index)
			if score is None or score <= 0:
				continue
			rows.append(_with_meta(copy.deepcopy(doc), searchScore=score))
		rows.sort(key=lambda row: -row[_META]["searchScore"])
		return rows

	def _paths(self, doc: Mapping[str, Any], path: Any, index: Mapping[str, Any]) -> list[str]:
		if isinstance(path, Mapping) and "wildcard" in path:
			allowed = index.get("paths") or [key for key in doc if key != "_id"]
			return [key for key in allowed if _strings(_get(doc, key))]
		if isinstance(path, str):
			return [path]
		return [item for item in path or [] if isinstance(item, str)]

	def _score_operator(self, doc: Mapping[str, Any], spec: Mapping[str, Any], index: Mapping[str, Any]) -> Optional[float]:
		if "compound" in spec:
			compound = spec["compound"]
			total = 0.0
			for clause in compound.get("must", []):
				score = self._score_operator(doc, clause, index)
				if not score:
					return None
				total += score
			for clause in compound.get("filter", []):
				if not self._score_operator(doc, clause, index):
					return None
			for clause in compound.get("mustNot", []):
				if self._score_operator(doc, clause, index):
					return None
			for clause in compound.get("should", []):
				total += self._score_operator(doc, clause, index) or 0.0
			return total
		if "text" in spec:
			return self._score_text(doc, spec["text"], index)
		if "autocomplete" in spec:
			return self._score_autocomplete(doc, spec["autocomplete"], index)
		return None

	def _score_text(self, doc: Mapping[str, Any], spec: Mapping[str, Any], index: Mapping[str, Any]) -> float:
		query_tokens = _tokens(str(spec.get("query", "")))
		fuzzy = spec.get("fuzzy")
		prefix_length = int(fuzzy.get("prefixLength", 0)) if isinstance(fuzzy, Mapping) else 0
		total = 0.0
		for path in self._paths(doc, spec.get("path"), index):
			field_tokens = [token for chunk in _strings(_get(doc, path)) for token in _tokens(chunk)]
			for query_token in query_tokens:
				best = 0.0
				for token in field_tokens:
					if token == query_token:
						best = 1.0
						break
					if fuzzy is None or token[:prefix_length] != query_token[:prefix_length]:
						continue
					ratio = SequenceMatcher(None, token, query_token).ratio()
					if ratio >= 0.8:
						best = max(best, ratio)
				total += best
		return total

	def _score_autocomplete(self, doc: Mapping[str, Any], spec: Mapping[str, Any], index: Mapping[str, Any]) -> float:
		query = str(spec.get("query", "")).strip().lower()
		if not query:
			return 0.0
		pattern = re.compile(r"\b" + re.escape(query))
		total = 0.0
		for path in self._paths(doc, spec.get("path"), index):
			for chunk in _strings(_get(doc, path)):
				if pattern.search(chunk.lower()):
					total += 1.0 + len(query) / max(len(chunk), 1)
		return total

	# -------------------------------------------------------------- pipeline

	def _run_pipeline(self, coll: _Collection, pipeline: Sequence[Mapping[str, Any]], rows: Optional[list[Document]] = None) -> list[Document]:
		for position, stage in enumerate(pipeline):
			if len(stage) != 1:
				raise StoreOperationError("a pipeline stage specification object must contain exactly one field", code=40323)
			(op, spec), = stage.items()
			match op:
				case "$search":
					if position != 0 or rows is not None:
						raise StoreOperationError("$search is only valid as the first stage in a pipeline", code=40602)
					rows = self._search_stage(coll, spec)
				case "$match":
					if "$text" in spec:
						if position != 0 or rows is not None:
							raise StoreOperationError("$match with $text is only allowed as the first pipeline stage", code=17313)
						rows = self._filter(coll, spec)
					else:
						current = rows if rows is not None else [copy.deepcopy(doc) for doc in coll.docs]
						rows = [row for row in current if _matches(row, spec, lambda doc: 0.0)]
				case _:
					if rows is None:
						rows = [copy.deepcopy(doc) for doc in coll.docs]
					rows = self._apply_stage(op, spec, rows)
		if rows is None:
			rows = [copy.deepcopy(doc) for doc in coll.docs]
		return rows

	def _apply_stage(self, op: str, spec: Any, rows: list[Document]) -> list[Document]:
		match op:
			case "$addFields" | "$set":
				for row in rows:
					for key, expr in spec.items():
						_set(row, key, _eval(row, expr))
				return rows
			case "$sort":
				return _sort_docs(rows, list(spec.items()))
			case "$skip":
				return rows[int(spec):]
			case "$limit":
				return rows[: int(spec)]
			case "$project":
				return [_project(row, spec) for row in rows]
			case "$count":
				return [{spec: len(rows)}] if rows else []
			case "$facet":
				return [{name: [_strip(row) for row in self._apply_stages(sub, copy.deepcopy(rows))] for name, sub in spec.items()}]
			case "$group":
				return self._group(spec, rows)
			case "$lookup":
				return self._lookup(spec, rows)
			case "$unwind":
				return self._unwind(spec, rows)
			case _:
				raise StoreOperationError(f"Unrecognized pipeline stage name: '{op}'", code=40324)

	def _apply_stages(self, stages: Sequence[Mapping[str, Any]], rows: list[Document]) -> list[Document]:
		for stage in stages:
			(op, spec), = stage.items()
			if op == "$match":
				rows = [row for row in rows if _matches(row, spec, lambda doc: 0.0)]
			else:
				rows = self._apply_stage(op, spec, rows)
		return rows

	def _group(self, spec: Mapping[str, Any], rows: list[Document]) -> list[Document]:
		key_expr = spec.get("_id")
		groups: dict[Any, Document] = {}
		order: list[Any] = []
		for row in rows:
			key_value = _eval(row, key_expr)
			marker = repr(key_value)
			if marker not in groups:
				groups[marker] = {"_id": key_value, "\x00rows": []}
				order.append(marker)
			groups[marker]["\x00rows"].append(row)
		out: list[Document] = []
		for marker in order:
			group = groups[marker]
			members = group.pop("\x00rows")
			for field, accumulator in spec.items():
				if field == "_id":
					continue
				(acc, expr), = accumulator.items()
				values = [_eval(member, expr) for member in members]
				numbers = [value for value in values if isinstance(value, (int, float)) and not isinstance(value, bool)]
				match acc:
					case "$sum":
						group[field] = sum(numbers)
					case "$avg":
						group[field] = sum(numbers) / len(numbers) if numbers else None
					case "$max":
						present = [value for value in values if value is not None]
						group[field] = max(present, key=functools.cmp_to_key(_compare)) if present else None
					case "$min":
						present = [value for value in values if value is not None]
						group[field] = min(present, key=functools.cmp_to_key(_compare)) if present else None
					case "$first":
						group[field] = values[0] if values else None
					case "$last":
						group[field] = values[-1] if values else None
					case "$push":
						group[field] = values
					case _:
						raise StoreOperationError(f"unknown group operator '{acc}'", code=15952)
			out.append(group)
		return out

	def _lookup(self, spec: Mapping[str, Any], rows: list[Document]) -> list[Document]:
		foreign = self._collections.get(spec["from"])
		foreign_docs = foreign.docs if foreign else []
		for row in rows:
			local = _get(row, spec["localField"])
			keys = _candidates(local)
			matched = [
				copy.deepcopy(doc)
				for doc in foreign_docs
				if any(_equal(key, candidate) for key in keys for candidate in _candidates(_get(doc, spec["foreignField"])))
			]
			row[spec["as"]] = matched
		return rows

	def _unwind(self, spec: Any, rows: list[Document]) -> list[Document]:
		if isinstance(spec, str):
			path, preserve = spec, False
		else:
			path, preserve = spec["path"], bool(spec.get("preserveNullAndEmptyArrays"))
		field = path.lstrip("$")
		out: list[Document] = []
		for row in rows:
			value = _get(row, field)
			if isinstance(value, list):
				if not value:
					if preserve:
						_unset(row, field)
						out.append(row)
					continue
				for item in value:
					clone = copy.deepcopy(row)
					_set(clone, field, item)
					out.append(clone)
			elif value is _MISSING or value is None:
				if preserve:
					out.append(row)
			else:
				out.append(row)
		return out

	# ---------------------------------------------------------------- unique

	def _check_unique(self, coll: _Collection, candidate: Mapping[str, Any], *, ignore: Optional[Mapping[str, Any]] = None) -> None:
		for doc in coll.docs:
			if doc is ignore:
				continue
			if "_id" in candidate and doc.get("_id") == candidate["_id"]:
				raise StoreOperationError(
					f"E11000 duplicate key error index: _id_ dup key: {{ _id: {candidate['_id']!r} }}",
					code=DUPLICATE_KEY,
					code_name="DuplicateKey",
				)
		for index in coll.indexes.values():
			if not index.get("unique"):
				continue
			fields = list(index["key"].keys())
			wanted = [_get(candidate, field) for field in fields]
			for doc in coll.docs:
				if doc is ignore:
					continue
				if [_get(doc, field) for field in fields] == wanted:
					raise StoreOperationError(
						f"E11000 duplicate key error index: {index['name']}",
						code=DUPLICATE_KEY,
						code_name="DuplicateKey",
					)

	# -------------------------------------------------------------- contract

	async def find(
		self,
		collection: str,
		filter: Optional[Mapping[str, Any]] = None,
		*,
		projection: Optional[Mapping[str, Any]] = None,
		sort: Optional[SortSpec] = None,
		skip: int = 0,
		limit: int = 0,
	) -> list[Document]:
		async with self._lock:
			self._check()
			rows = self._filter(self._coll(collection), filter)
			if sort:
				rows = _sort_docs(rows, sort)
			if skip:
				rows = rows[skip:]
			if limit:
				rows = rows[:limit]
			return [_strip(_project(row, projection or {})) for row in rows]

	async def aggregate(self, collection: str, pipeline: Sequence[Mapping[str, Any]]) -> list[Document]:
		async with self._lock:
			self._check()
			rows = self._run_pipeline(self._coll(collection), pipeline)
			return [_strip(row) for row in rows]

	async def create_index(self, collection: str, keys: SortSpec, **options: Any) -> str:
		async with self._lock:
			self._check()
			coll = self._coll(collection)
			keys = list(keys)
			name = options.get("name") or _index_name(keys)
			normalised = _normalise_keys(keys)
			spec: Document = {"v": 2, "key": normalised, "name": name}
			if options.get("unique"):
				spec["unique"] = True
			if "_fts" in normalised:
				weights = {field: 1 for field, direction in keys if direction == "text"}
				weights.update(options.get("weights") or {})
				spec.update(
					{
						"weights": weights,
						"default_language": options.get("default_language", "english"),
						"language_override": "language",
						"textIndexVersion": 3,
					}
				)
			existing = coll.indexes.get(name)
			if existing is not None:
				if existing["key"] != normalised:
					raise StoreOperationError(
						f"An existing index has the same name as the requested index: {name}",
						code=INDEX_KEY_SPECS_CONFLICT,
						code_name="IndexKeySpecsConflict",
					)
				if existing != spec:
					raise StoreOperationError(
						f"Index with name: {name} already exists with different options",
						code=INDEX_OPTIONS_CONFLICT,
						code_name="IndexOptionsConflict",
					)
				return name
			for other in coll.indexes.values():
				if other["key"] == normalised:
					raise StoreOperationError(
						f"Index already exists with a different name: {other['name']}",
						code=INDEX_OPTIONS_CONFLICT,
						code_name="IndexOptionsConflict",
					)
			coll.indexes[name] = spec
			return name

	async def list_indexes(self, collection: str) -> list[Document]:
		async with self._lock:
			self._check()
			coll = self._collections.get(collection)
			if coll is None:
				return []
			return [copy.deepcopy(index) for index in coll.indexes.values()]

	async def drop_index(self, collection: str, name: str) -> None:
		async with self._lock:
			self._check()
			coll = self._coll(collection)
			if name == "_id_":
				raise StoreOperationError("cannot drop _id index", code=72, code_name="InvalidOptions")
			if name not in coll.indexes:
				raise StoreOperationError(f"index not found with name [{name}]", code=INDEX_NOT_FOUND, code_name="IndexNotFound")
			del coll.indexes[name]

	async def estimated_count(self, collection: str) -> int:
		async with self._lock:
			self._check()
			coll = self._collections.get(collection)
			return len(coll.docs) if coll else 0

	async def count(self, collection: str, filter: Mapping[str, Any]) -> int:
		async with self._lock:
			self._check()
			return len(self._filter(self._coll(collection), filter))

	async def distinct(self, collection: str, field: str, filter: Optional[Mapping[str, Any]] = None) -> list[Any]:
		async with self._lock:
			self._check()
			seen: list[Any] = []
			for row in self._filter(self._coll(collection), filter):
				value = _get(row, field)
				if value is _MISSING:
					continue
				for item in value if isinstance(value, list) else [value]:
					if item not in seen:
						seen.append(item)
			return seen

	async def update_one(
		self,
		collection: str,
		filter: Mapping[str, Any],
		update: Mapping[str, Any],
		*,
		upsert: bool = False,
	) -> None:
		async with self._lock:
			self._check()
			coll = self._coll(collection)
			scorer = self._text_scorer(coll, filter)
			target = next((doc for doc in coll.docs if _matches(doc, filter, scorer)), None)
			if target is None:
				if not upsert:
					return
				fresh: Document = {
					key: value
					for key, value in filter.items()
					if not key.startswith("$") and not (isinstance(value, Mapping) and any(str(k).startswith("$") for k in value))
				}
				for key, value in (update.get("$setOnInsert") or {}).items():
					_set(fresh, key, copy.deepcopy(value))
				self._apply_update(fresh, update)
				fresh.setdefault("_id", ObjectId())
				self._check_unique(coll, fresh)
				coll.docs.append(fresh)
				return
			updated = copy.deepcopy(target)
			self._apply_update(updated, update)
			self._check_unique(coll, updated, ignore=target)
			target.clear()
			target.update(updated)

	@staticmethod
	def _apply_update(doc: Document, update: Mapping[str, Any]) -> None:
		for op, fields in update.items():
			match op:
				case "$set":
					for key, value in fields.items():
						_set(doc, key, copy.deepcopy(value))
				case "$inc":
					for key, value in fields.items():
						current = _get(doc, key)
						_set(doc, key, (0 if current is _MISSING or current is None else current) + value)
				case "$unset":
					for key in fields:
						_unset(doc, key)
				case "$setOnInsert":
					continue
				case _:
					raise StoreOperationError(f"Unknown modifier: {op}", code=9, code_name="FailedToParse")

	async def delete_many(self, collection: str, filter: Mapping[str, Any]) -> int:
		async with self._lock:
			self._check()
			coll = self._coll(collection)
			keep = [doc for doc in coll.docs if not _matches(doc, filter, lambda doc: 0.0)]
			removed = len(coll.docs) - len(keep)
			coll.docs = keep
			return removed

	async def insert_many(self, collection: str, documents: Iterable[Document]) -> list[Any]:
		async with self._lock:
			self._check()
			coll = self._coll(collection)
			ids: list[Any] = []
			for doc in documents:
				fresh = copy.deepcopy(dict(doc))
				fresh.setdefault("_id", ObjectId())
				self._check_unique(coll, fresh)
				coll.docs.append(fresh)
				ids.append(fresh["_id"])
			return ids

	async def ping(self) -> None:
		self._check()

	async def close(self) -> None:
		return None

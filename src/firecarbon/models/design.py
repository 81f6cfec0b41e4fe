"""
Design matrices with hierarchical inclusion constraints.

This module expands an R-style model formula into a numeric design matrix and
a parallel constraint matrix. Entry ``C[i, j] = 1`` of the constraint matrix
means that term ``i`` requires term ``j``: every interaction term requires all
of its lower-order component terms, recursively down to the main effects.

- parse_formula: formula string to ordered variable tuples
- build_design_matrix: treatment-coded design matrix plus constraints
- build_constraint_matrix: constraint matrix from term names
- design_for_new_data: encode new rows with an existing term structure
- effective_inclusion: map raw inclusion draws through the constraints
"""

import re
from dataclasses import dataclass, field
from itertools import combinations, product

import jax.numpy as jnp
import numpy as np
import pandas as pd
from beartype import beartype
from beartype.typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from firecarbon.errors import ConfigurationError
from firecarbon.logging import configure_logging

__all__ = [
    "INTERCEPT",
    "DesignMatrix",
    "DesignTerm",
    "build_constraint_matrix",
    "build_design_matrix",
    "design_for_new_data",
    "effective_inclusion",
    "parse_formula",
]

logger = configure_logging(__name__)

INTERCEPT = "(Intercept)"
SEPARATOR = ":"

_TOKEN = re.compile(r"\s*(?:(?P<name>[A-Za-z_.][A-Za-z0-9_.]*)|(?P<int>\d+)|(?P<op>[-+*:^()~]))")


@dataclass(frozen=True)
class DesignTerm:
    """One column of the design matrix.

    Attributes:
        name: Unique column name, components joined with ``:``
        variables: Covariates the term is built from, in formula order
        order: Number of components (1 for the intercept and main effects)
    """

    name: str
    variables: Tuple[str, ...]
    order: int

    @property
    def is_intercept(self) -> bool:
        return self.name == INTERCEPT


@dataclass
class DesignMatrix:
    """
    Expanded design and constraint matrices.

    Attributes:
        X: One row per observation, one float column per term
        terms: Column metadata, aligned with ``X.columns``
        constraints: Square 0/1 matrix, ``constraints[i, j] = 1`` when term
            ``i`` requires term ``j``
        formula_terms: Variable tuples produced by ``parse_formula``
        levels: Level order of each categorical variable; the first level is
            the reference level
        intercept: Whether the design has an intercept column
    """

    X: pd.DataFrame
    terms: List[DesignTerm]
    constraints: np.ndarray
    formula_terms: List[Tuple[str, ...]]
    levels: Dict[str, List[str]] = field(default_factory=dict)
    intercept: bool = True

    @property
    def term_names(self) -> List[str]:
        return [term.name for term in self.terms]

    @property
    def n_terms(self) -> int:
        return len(self.terms)

    def constraint_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            self.constraints, index=self.term_names, columns=self.term_names
        )


def _tokenize(formula: str) -> List[Tuple[str, str]]:
    tokens = []
    pos = 0
    formula = formula.rstrip()
    while pos < len(formula):
        match = _TOKEN.match(formula, pos)
        if match is None or match.end() == pos:
            raise ConfigurationError(
                f"cannot parse formula {formula!r} at position {pos}"
            )
        kind = match.lastgroup
        tokens.append((kind, match.group(kind)))
        pos = match.end()
    return tokens


class _FormulaParser:
    """
    Recursive-descent parser for the formula operators ``+ - * : ^ ()``.

    Terms are frozensets of variable names; ``0``/``1`` toggle the intercept.
    Precedence, highest first: ``^``, ``:``, ``*``, ``+``/``-``.
    """

    def __init__(self, formula: str):
        self.formula = formula
        self.tokens = _tokenize(formula)
        self.pos = 0
        self.intercept = True
        self.variable_order: List[str] = []

    def peek(self) -> Optional[Tuple[str, str]]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self) -> Tuple[str, str]:
        token = self.peek()
        if token is None:
            raise ConfigurationError(f"unexpected end of formula {self.formula!r}")
        self.pos += 1
        return token

    def parse(self) -> List[FrozenSet[str]]:
        if self.peek() == ("op", "~"):
            self.take()
        terms = self.parse_sum()
        if self.peek() is not None:
            raise ConfigurationError(
                f"unexpected {self.peek()[1]!r} in formula {self.formula!r}"
            )
        return terms

    def parse_sum(self) -> List[FrozenSet[str]]:
        terms = self.parse_product()
        while self.peek() in (("op", "+"), ("op", "-")):
            _, op = self.take()
            if self.peek() is not None and self.peek()[0] == "int":
                self.set_intercept(self.take()[1], negated=op == "-")
                continue
            right = self.parse_product()
            if op == "+":
                terms = _union(terms, right)
            else:
                terms = [t for t in terms if t not in right]
        return terms

    def parse_product(self) -> List[FrozenSet[str]]:
        terms = self.parse_interaction()
        while self.peek() == ("op", "*"):
            self.take()
            right = self.parse_interaction()
            terms = _union(_union(terms, right), _interact(terms, right))
        return terms

    def parse_interaction(self) -> List[FrozenSet[str]]:
        terms = self.parse_power()
        while self.peek() == ("op", ":"):
            self.take()
            terms = _interact(terms, self.parse_power())
        return terms

    def parse_power(self) -> List[FrozenSet[str]]:
        terms = self.parse_atom()
        if self.peek() == ("op", "^"):
            self.take()
            kind, value = self.take()
            if kind != "int" or int(value) < 1:
                raise ConfigurationError(
                    f"'^' needs a positive integer in formula {self.formula!r}"
                )
            base = terms
            for _ in range(int(value) - 1):
                terms = _union(terms, _interact(terms, base))
        return terms

    def parse_atom(self) -> List[FrozenSet[str]]:
        kind, value = self.take()
        if kind == "name":
            if value not in self.variable_order:
                self.variable_order.append(value)
            return [frozenset([value])]
        if kind == "int":
            self.set_intercept(value, negated=False)
            return []
        if value == "(":
            terms = self.parse_sum()
            if self.take() != ("op", ")"):
                raise ConfigurationError(
                    f"unbalanced parentheses in formula {self.formula!r}"
                )
            return terms
        raise ConfigurationError(
            f"unexpected {value!r} in formula {self.formula!r}"
        )

    def set_intercept(self, value: str, negated: bool) -> None:
        if value not in ("0", "1"):
            raise ConfigurationError(
                f"only 0 or 1 may appear as a number in formula {self.formula!r}"
            )
        self.intercept = (value == "1") != negated


def _union(
    left: List[FrozenSet[str]], right: List[FrozenSet[str]]
) -> List[FrozenSet[str]]:
    return left + [t for t in right if t not in left]


def _interact(
    left: List[FrozenSet[str]], right: List[FrozenSet[str]]
) -> List[FrozenSet[str]]:
    out: List[FrozenSet[str]] = []
    for a, b in product(left, right):
        term = a | b
        if term not in out:
            out.append(term)
    return out


@beartype
def parse_formula(formula: str) -> Tuple[List[Tuple[str, ...]], bool]:
    """
    Expand a one-sided model formula into its terms.

    Args:
        formula: Formula such as ``"~ depth*severity"`` or
            ``"~ (depth + microsite + severity)^2 + baseline_total_carbon"``.

    Returns:
        Variable tuples ordered by interaction order and then by first
        appearance, and whether the intercept is included.

    Examples:
        >>> parse_formula("~ a*b")
        ([('a',), ('b',), ('a', 'b')], True)
        >>> parse_formula("~ (a + b + c)^2 - 1")[0][-1]
        ('b', 'c')
    """
    parser = _FormulaParser(formula)
    terms = parser.parse()
    rank = {name: i for i, name in enumerate(parser.variable_order)}
    ordered = [tuple(sorted(term, key=rank.__getitem__)) for term in terms]
    ordered.sort(key=len)
    return ordered, parser.intercept


def _is_categorical(series: pd.Series) -> bool:
    return not pd.api.types.is_numeric_dtype(series) or pd.api.types.is_bool_dtype(
        series
    )


def _resolve_levels(
    data: pd.DataFrame,
    variables: Sequence[str],
    levels: Optional[Dict[str, Sequence[str]]],
) -> Dict[str, List[str]]:
    resolved: Dict[str, List[str]] = {}
    levels = levels or {}
    for variable in variables:
        series = data[variable]
        if variable not in levels and not _is_categorical(series):
            continue
        observed = set(series.dropna().astype(str))
        if variable in levels:
            order = [str(level) for level in levels[variable]]
            unknown = observed - set(order)
            if unknown:
                raise ConfigurationError(
                    f"{variable!r} has values {sorted(unknown)} not in the "
                    f"declared levels {order}"
                )
            unused = [level for level in order if level not in observed]
            if unused:
                logger.debug(f"dropping unobserved levels of {variable}: {unused}")
            order = [level for level in order if level in observed]
        elif isinstance(series.dtype, pd.CategoricalDtype):
            order = [str(c) for c in series.cat.categories if str(c) in observed]
        else:
            order = sorted(observed)
        bad = [level for level in order if SEPARATOR in level]
        if bad:
            raise ConfigurationError(
                f"levels of {variable!r} must not contain {SEPARATOR!r}: {bad}"
            )
        resolved[variable] = order
    return resolved


def _variable_columns(
    data: pd.DataFrame,
    variable: str,
    levels: Dict[str, List[str]],
) -> List[Tuple[str, np.ndarray]]:
    if variable not in data.columns:
        raise ConfigurationError(f"formula variable {variable!r} not in data")
    series = data[variable]
    if variable not in levels:
        return [(variable, series.to_numpy(dtype=float))]

    values = series.astype(str)
    unknown = set(values) - set(levels[variable])
    if unknown:
        raise ConfigurationError(
            f"{variable!r} has levels {sorted(unknown)} unknown to the design "
            f"(known: {levels[variable]})"
        )
    return [
        (f"{variable}{level}", (values == level).to_numpy(dtype=float))
        for level in levels[variable][1:]
    ]


def _encode(
    data: pd.DataFrame,
    formula_terms: Sequence[Tuple[str, ...]],
    levels: Dict[str, List[str]],
    intercept: bool,
) -> Tuple[pd.DataFrame, List[DesignTerm]]:
    columns: Dict[str, np.ndarray] = {}
    terms: List[DesignTerm] = []

    def add(name: str, variables: Tuple[str, ...], values: np.ndarray) -> None:
        if name in columns:
            raise ConfigurationError(
                f"design term name {name!r} is generated more than once; "
                "rename variables or levels so term names are unique"
            )
        columns[name] = values
        terms.append(DesignTerm(name, variables, name.count(SEPARATOR) + 1))

    if intercept:
        add(INTERCEPT, (), np.ones(len(data)))

    for variables in formula_terms:
        parts = [_variable_columns(data, v, levels) for v in variables]
        for combo in product(*parts):
            name = SEPARATOR.join(part_name for part_name, _ in combo)
            values = np.prod([v for _, v in combo], axis=0)
            add(name, variables, values)

    return pd.DataFrame(columns, index=data.index), terms


@beartype
def build_constraint_matrix(term_names: Sequence[str]) -> np.ndarray:
    """
    Build the hierarchical inclusion constraint matrix.

    Each term requires itself. A term of order ``k > 1`` additionally
    requires every term named by a ``(k - 1)``-subset of its components, and,
    recursively, everything those terms require.

    Args:
        term_names: Unique design term names.

    Returns:
        Square ``int8`` matrix with ``C[i, j] = 1`` when term ``i`` requires
        term ``j``.

    Raises:
        ConfigurationError: If names are not unique, or a component term has
            no matching column.

    Examples:
        >>> C = build_constraint_matrix(["a", "b", "a:b"])
        >>> C[2].tolist()
        [1, 1, 1]
    """
    index = {name: i for i, name in enumerate(term_names)}
    if len(index) != len(term_names):
        duplicated = sorted(
            {name for name in term_names if list(term_names).count(name) > 1}
        )
        raise ConfigurationError(f"duplicate design term names: {duplicated}")

    required: Dict[str, FrozenSet[int]] = {}

    def requirements(name: str, parent: str) -> FrozenSet[int]:
        if name in required:
            return required[name]
        if name not in index:
            raise ConfigurationError(
                f"term {parent!r} requires component {name!r}, which has no "
                "column in the design matrix"
            )
        marked = {index[name]}
        components = name.split(SEPARATOR)
        if len(components) > 1:
            for subset in combinations(components, len(components) - 1):
                marked |= requirements(SEPARATOR.join(subset), name)
        required[name] = frozenset(marked)
        return required[name]

    constraints = np.zeros((len(term_names), len(term_names)), dtype=np.int8)
    for i, name in enumerate(term_names):
        constraints[i, sorted(requirements(name, name))] = 1
    return constraints


@beartype
def build_design_matrix(
    data: pd.DataFrame,
    formula: str,
    levels: Optional[Dict[str, Sequence[str]]] = None,
) -> DesignMatrix:
    """
    Expand ``formula`` over ``data`` into design and constraint matrices.

    Categorical variables (non-numeric columns, or any column listed in
    ``levels``) use treatment coding with the first level as reference.
    Interaction columns are products of their component columns.

    Args:
        data: Observations, one row each.
        formula: R-style one-sided formula.
        levels: Optional level order per categorical variable.

    Returns:
        The design matrix with its constraint matrix.

    Examples:
        >>> df = pd.DataFrame({"depth": ["0-5cm", "5-15cm"], "y": [1.0, 2.0]})
        >>> build_design_matrix(df, "~ depth").term_names
        ['(Intercept)', 'depth5-15cm']
    """
    formula_terms, intercept = parse_formula(formula)
    variables = list(dict.fromkeys(v for term in formula_terms for v in term))
    missing = [v for v in variables if v not in data.columns]
    if missing:
        raise ConfigurationError(
            f"formula {formula!r} uses variables missing from the data: {missing}"
        )

    resolved = _resolve_levels(data, variables, levels)
    X, terms = _encode(data, formula_terms, resolved, intercept)
    constraints = build_constraint_matrix([term.name for term in terms])
    logger.debug(f"design for {formula!r}: {len(terms)} terms, {len(X)} rows")

    return DesignMatrix(
        X=X,
        terms=terms,
        constraints=constraints,
        formula_terms=formula_terms,
        levels=resolved,
        intercept=intercept,
    )


@beartype
def design_for_new_data(design: DesignMatrix, new_data: pd.DataFrame) -> pd.DataFrame:
    """
    Encode ``new_data`` with the term structure and levels of ``design``.

    Raises:
        ConfigurationError: If a variable or level is unknown to the design.
    """
    X, terms = _encode(new_data, design.formula_terms, design.levels, design.intercept)
    if [t.name for t in terms] != design.term_names:
        raise ConfigurationError(
            "new data does not reproduce the design terms: "
            f"{[t.name for t in terms]} != {design.term_names}"
        )
    return X


def effective_inclusion(delta, constraints):
    """
    Constrained inclusion indicators.

    Term ``i`` is included when the dot product of the raw draws ``delta``
    with row ``i`` of the constraint matrix is positive. Because the matrix is
    reflexive, a term whose own draw is 1 is always included.

    Args:
        delta: Raw 0/1 draws, shape ``(n_terms,)`` or ``(n_draws, n_terms)``.
        constraints: Constraint matrix, shape ``(n_terms, n_terms)``.

    Returns:
        Float array of 0/1 indicators with the shape of ``delta``.
    """
    delta = jnp.asarray(delta, dtype=jnp.float32)
    constraints = jnp.asarray(constraints, dtype=jnp.float32)
    return jnp.where(delta @ constraints.T > 0, 1.0, 0.0)

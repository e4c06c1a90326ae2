"""
Arithmetic formulas for calculated measures and custom fields.

A formula references stored values as ``{name}``::

    {weight} / (({height} / 100) ^ 2)
    round(age_years({birth_date}), 0)
    {current:weight} - {previous:weight}

Supported: numbers, ``+ - * / ^`` (``^`` is right-associative), unary
minus, parentheses and the functions in ``FUNCTIONS``.  Formulas are parsed
into a small tuple tree, never handed to ``eval``.
"""
from __future__ import annotations

import math
import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from functools import lru_cache

from django.utils import timezone


class FormulaError(ValueError):
    """Raised for malformed formulas and for evaluation failures."""


VARIABLE_RE = re.compile(
    r'^(?:[a-zA-Z_][a-zA-Z0-9_]*|measure:[a-zA-Z_][a-zA-Z0-9_]*|(?:current|previous|delta|avg\d+):[a-zA-Z_][a-zA-Z0-9_]*)$'
)
TOKEN_RE = re.compile(r'\s*(?:(\d+(?:\.\d*)?|\.\d+)|\{([^{}]*)\}|([a-zA-Z_][a-zA-Z0-9_]*)|(.))')
OPERATORS = set('+-*/^(),')


def _today() -> date:
    return timezone.localdate()


def _as_number(value) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            pass
    raise FormulaError(f'Value {value!r} is not a number')


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            pass
    raise FormulaError(f'Value {value!r} is not a date')


def _age_years(value) -> float:
    born = _as_date(value)
    today = _today()
    years = today.year - born.year - ((today.month, today.day) < (born.month, born.day))
    return float(years)


def _round(value, digits=0) -> float:
    try:
        digits = int(_as_number(digits))
    except (OverflowError, ValueError):
        raise FormulaError('round() needs a finite number of digits')
    quantum = Decimal(1).scaleb(-digits)
    try:
        return float(Decimal(str(_as_number(value))).quantize(quantum, rounding=ROUND_HALF_UP))
    except InvalidOperation:
        raise FormulaError(f'Cannot round {value} to {digits} decimal places')


def _sqrt(value) -> float:
    number = _as_number(value)
    if number < 0:
        raise FormulaError('Square root of a negative number')
    return math.sqrt(number)


# name -> (callable, min args, max args); max None means unbounded
FUNCTIONS = {
    'sqrt': (_sqrt, 1, 1),
    'abs': (lambda v: abs(_as_number(v)), 1, 1),
    'round': (_round, 1, 2),
    'floor': (lambda v: float(math.floor(_as_number(v))), 1, 1),
    'ceil': (lambda v: float(math.ceil(_as_number(v))), 1, 1),
    'min': (lambda *vs: min(_as_number(v) for v in vs), 1, None),
    'max': (lambda *vs: max(_as_number(v) for v in vs), 1, None),
    'today': (_today, 0, 0),
    'year': (lambda v: float(_as_date(v).year), 1, 1),
    'month': (lambda v: float(_as_date(v).month), 1, 1),
    'day': (lambda v: float(_as_date(v).day), 1, 1),
    'age_years': (_age_years, 1, 1),
}


def _tokenize(formula: str) -> list[tuple[str, str]]:
    tokens = []
    pos = 0
    text = formula.rstrip()
    while pos < len(text):
        match = TOKEN_RE.match(text, pos)
        number, variable, name, other = match.groups()
        pos = match.end()
        if number is not None:
            tokens.append(('num', number))
        elif variable is not None:
            variable = variable.strip()
            if not VARIABLE_RE.match(variable):
                raise FormulaError(f'Invalid variable name: {{{variable}}}')
            tokens.append(('var', variable))
        elif name is not None:
            tokens.append(('name', name))
        elif other in OPERATORS:
            tokens.append(('op', other))
        elif other == '{' or other == '}':
            raise FormulaError('Unbalanced braces in formula')
        else:
            raise FormulaError(f'Unexpected character {other!r}')
    return tokens


class _Parser:
    def __init__(self, tokens):
        self.tokens = tokens
        self.pos = 0

    def peek(self):
        return self.tokens[self.pos] if self.pos < len(self.tokens) else (None, None)

    def take(self, value=None):
        kind, text = self.peek()
        if kind is None:
            raise FormulaError('Unexpected end of formula')
        if value is not None and text != value:
            raise FormulaError(f"Expected '{value}' but found '{text}'")
        self.pos += 1
        return kind, text

    def parse(self):
        if not self.tokens:
            raise FormulaError('Formula is empty')
        node = self.expr()
        if self.pos != len(self.tokens):
            raise FormulaError(f"Unexpected '{self.peek()[1]}'")
        return node

    def expr(self):
        node = self.term()
        while self.peek() in (('op', '+'), ('op', '-')):
            op = self.take()[1]
            node = ('bin', op, node, self.term())
        return node

    def term(self):
        node = self.unary()
        while self.peek() in (('op', '*'), ('op', '/')):
            op = self.take()[1]
            node = ('bin', op, node, self.unary())
        return node

    def unary(self):
        if self.peek() == ('op', '-'):
            self.take()
            return ('neg', self.unary())
        if self.peek() == ('op', '+'):
            self.take()
            return self.unary()
        return self.power()

    def power(self):
        node = self.atom()
        if self.peek() == ('op', '^'):
            self.take()
            node = ('bin', '^', node, self.unary())
        return node

    def atom(self):
        kind, text = self.take()
        if kind == 'num':
            return ('num', float(text))
        if kind == 'var':
            return ('var', text)
        if kind == 'name':
            if text not in FUNCTIONS:
                raise FormulaError(f'Unknown function: {text}')
            self.take('(')
            args = []
            if self.peek() != ('op', ')'):
                args.append(self.expr())
                while self.peek() == ('op', ','):
                    self.take()
                    args.append(self.expr())
            self.take(')')
            _, low, high = FUNCTIONS[text]
            if len(args) < low or (high is not None and len(args) > high):
                raise FormulaError(f'Wrong number of arguments for {text}()')
            return ('call', text, tuple(args))
        if (kind, text) == ('op', '('):
            node = self.expr()
            self.take(')')
            return node
        raise FormulaError(f"Unexpected '{text}'")


@lru_cache(maxsize=512)
def parse(formula: str):
    if formula is None or not str(formula).strip():
        raise FormulaError('Formula is empty')
    return _Parser(_tokenize(str(formula))).parse()


def _collect(node, out: list) -> None:
    kind = node[0]
    if kind == 'var':
        if node[1] not in out:
            out.append(node[1])
    elif kind == 'neg':
        _collect(node[1], out)
    elif kind == 'bin':
        _collect(node[2], out)
        _collect(node[3], out)
    elif kind == 'call':
        for arg in node[2]:
            _collect(arg, out)


def extract_dependencies(formula: str) -> list[str]:
    """Variable names referenced by ``formula``, in order of appearance."""
    out: list[str] = []
    _collect(parse(formula), out)
    return out


def base_name(variable: str) -> str:
    """``current:weight`` -> ``weight``."""
    return variable.split(':', 1)[1] if ':' in variable else variable


def validate(formula: str) -> list[str]:
    """Raise :class:`FormulaError` when malformed; return the dependencies."""
    return extract_dependencies(formula)


def _binary(op: str, left, right) -> float:
    a, b = _as_number(left), _as_number(right)
    if op == '+':
        return a + b
    if op == '-':
        return a - b
    if op == '*':
        return a * b
    if op == '/':
        if b == 0:
            raise FormulaError('Division by zero')
        return a / b
    try:
        result = a ** b
    except (OverflowError, ZeroDivisionError) as e:
        raise FormulaError(str(e))
    if isinstance(result, complex):
        raise FormulaError('Result is not a real number')
    return result


def _eval(node, values: dict):
    kind = node[0]
    if kind == 'num':
        return node[1]
    if kind == 'var':
        value = values.get(node[1])
        if value is None:
            raise FormulaError(f'Missing value for {{{node[1]}}}')
        return value
    if kind == 'neg':
        return -_as_number(_eval(node[1], values))
    if kind == 'bin':
        return _binary(node[1], _eval(node[2], values), _eval(node[3], values))
    func = FUNCTIONS[node[1]][0]
    return func(*(_eval(arg, values) for arg in node[2]))


def evaluate(formula: str, values: dict, decimal_places: int = 2) -> float:
    """Evaluate ``formula`` against ``values`` and round the result."""
    result = _as_number(_eval(parse(formula), values))
    if not math.isfinite(result):
        raise FormulaError('Result is not a finite number')
    return _round(result, decimal_places)


def find_cycle(name: str, dependencies, graph: dict) -> list[str] | None:
    """Return a dependency path leading back to ``name``, or None.

    ``graph`` maps each calculated item to the base names it depends on.
    """
    stack = [(dep, [name, dep]) for dep in dependencies]
    seen = set()
    while stack:
        current, path = stack.pop()
        if current == name:
            return path
        if current in seen:
            continue
        seen.add(current)
        for nxt in graph.get(current, ()):
            stack.append((nxt, path + [nxt]))
    return None

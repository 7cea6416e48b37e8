"""Recursive-descent parser for the decision expression language.

Precedence, lowest first: ternary, ``??``, ``or``, ``and``, equality,
relational/``in``, additive, multiplicative, unary, ``^``, postfix.

Unary mode is used for decision table cells: a comparison operator may start
an operand (``< 10`` means ``$ < 10``) and the top level may be a comma
separated list of alternatives.
"""

from typing import List, Tuple

from rotalabs_decision.core.errors import ExpressionSyntaxError
from rotalabs_decision.evaluation import ast
from rotalabs_decision.evaluation.lexer import Token, TokenType, tokenize

COMPARISON_OPS = ("==", "!=", "<", "<=", ">", ">=")


class Parser:
    """Builds an AST from a token list."""

    def __init__(self, source: str, unary: bool = False):
        self.source = source
        self.unary = unary
        self.tokens: List[Token] = tokenize(source)
        self.pos = 0

    # Token helpers

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def peek(self, offset: int = 1) -> Token:
        index = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[index]

    def advance(self) -> Token:
        token = self.tokens[self.pos]
        if token.type != TokenType.EOF:
            self.pos += 1
        return token

    def error(self, message: str, token: Token = None) -> ExpressionSyntaxError:
        token = token or self.current
        found = "end of expression" if token.type == TokenType.EOF else repr(token.value)
        return ExpressionSyntaxError(
            f"{message}, found {found} at position {token.position}",
            expression=self.source,
            position=token.position,
        )

    def expect_punct(self, char: str) -> Token:
        if not self.current.is_punct(char):
            raise self.error(f"Expected '{char}'")
        return self.advance()

    def expect_op(self, op: str) -> Token:
        if not self.current.is_op(op):
            raise self.error(f"Expected '{op}'")
        return self.advance()

    # Entry point

    def parse(self):
        if self.current.type == TokenType.EOF:
            raise self.error("Empty expression")

        if self.unary:
            items = [self.parse_expression()]
            while self.current.is_punct(","):
                self.advance()
                items.append(self.parse_expression())
            node = items[0] if len(items) == 1 else ast.AlternativeList(tuple(items))
        else:
            node = self.parse_expression()

        if self.current.type != TokenType.EOF:
            raise self.error("Unexpected token")
        return node

    # Grammar

    def parse_expression(self):
        return self.parse_ternary()

    def parse_ternary(self):
        condition = self.parse_coalesce()
        if self.current.is_op("?"):
            self.advance()
            then = self.parse_expression()
            self.expect_op(":")
            otherwise = self.parse_expression()
            return ast.Ternary(condition, then, otherwise)
        return condition

    def parse_coalesce(self):
        left = self.parse_or()
        while self.current.is_op("??"):
            self.advance()
            left = ast.Binary("??", left, self.parse_or())
        return left

    def parse_or(self):
        left = self.parse_and()
        while self.current.is_op("or", "||"):
            self.advance()
            left = ast.Binary("or", left, self.parse_and())
        return left

    def parse_and(self):
        left = self.parse_equality()
        while self.current.is_op("and", "&&"):
            self.advance()
            left = ast.Binary("and", left, self.parse_equality())
        return left

    def parse_equality(self):
        left = self.parse_relational()
        while self.current.is_op("==", "!="):
            op = self.advance().value
            left = ast.Binary(op, left, self.parse_relational())
        return left

    def parse_relational(self):
        left = self.parse_additive()
        while True:
            token = self.current
            if token.is_op("<", "<=", ">", ">=", "in"):
                self.advance()
                left = ast.Binary(token.value, left, self.parse_additive())
            elif token.is_op("not") and self.peek().is_op("in"):
                self.advance()
                self.advance()
                left = ast.Binary("not in", left, self.parse_additive())
            else:
                return left

    def parse_additive(self):
        left = self.parse_multiplicative()
        while self.current.is_op("+", "-"):
            op = self.advance().value
            left = ast.Binary(op, left, self.parse_multiplicative())
        return left

    def parse_multiplicative(self):
        left = self.parse_unary()
        while self.current.is_op("*", "/", "%"):
            op = self.advance().value
            left = ast.Binary(op, left, self.parse_unary())
        return left

    def parse_unary(self):
        token = self.current
        if token.is_op("-", "+"):
            self.advance()
            return ast.Unary(token.value, self.parse_unary())
        if token.is_op("not", "!"):
            self.advance()
            return ast.Unary("not", self.parse_unary())
        if self.unary and token.is_op(*COMPARISON_OPS):
            self.advance()
            return ast.Binary(token.value, ast.Identifier("$"), self.parse_additive())
        return self.parse_power()

    def parse_power(self):
        base = self.parse_postfix()
        if self.current.is_op("^"):
            self.advance()
            return ast.Binary("^", base, self.parse_unary())
        return base

    def parse_postfix(self):
        node = self.parse_primary()
        while True:
            if self.current.is_op("."):
                self.advance()
                name_token = self.current
                if name_token.type not in (TokenType.IDENTIFIER, TokenType.KEYWORD):
                    raise self.error("Expected property name after '.'")
                self.advance()
                node = ast.Member(node, name_token.value)
            elif self.current.is_punct("["):
                self.advance()
                index = self.parse_expression()
                self.expect_punct("]")
                node = ast.Index(node, index)
            else:
                return node

    def parse_primary(self):
        token = self.current

        if token.type == TokenType.NUMBER:
            self.advance()
            return ast.Literal(token.value)
        if token.type == TokenType.STRING:
            self.advance()
            return ast.Literal(token.value)
        if token.type == TokenType.TEMPLATE:
            self.advance()
            return self.parse_template(token)
        if token.type == TokenType.KEYWORD:
            if token.value == "true":
                self.advance()
                return ast.Literal(True)
            if token.value == "false":
                self.advance()
                return ast.Literal(False)
            if token.value == "null":
                self.advance()
                return ast.Literal(None)
            raise self.error("Unexpected keyword")
        if token.type == TokenType.IDENTIFIER:
            self.advance()
            if self.current.is_punct("("):
                return ast.Call(token.value, self.parse_arguments())
            return ast.Identifier(token.value)
        if token.is_punct("("):
            return self.parse_group_or_interval()
        if token.is_punct("["):
            return self.parse_array_or_interval()
        if token.is_punct("{"):
            return self.parse_object()

        raise self.error("Unexpected token")

    def parse_arguments(self) -> Tuple:
        self.expect_punct("(")
        args = []
        if not self.current.is_punct(")"):
            args.append(self.parse_expression())
            while self.current.is_punct(","):
                self.advance()
                args.append(self.parse_expression())
        self.expect_punct(")")
        return tuple(args)

    def parse_group_or_interval(self):
        self.expect_punct("(")
        inner = self.parse_expression()
        if self.current.is_op(".."):
            return self.finish_interval(inner, left_closed=False)
        self.expect_punct(")")
        return inner

    def parse_array_or_interval(self):
        self.expect_punct("[")
        if self.current.is_punct("]"):
            self.advance()
            return ast.ArrayLiteral(())
        first = self.parse_expression()
        if self.current.is_op(".."):
            return self.finish_interval(first, left_closed=True)
        items = [first]
        while self.current.is_punct(","):
            self.advance()
            if self.current.is_punct("]"):
                break
            items.append(self.parse_expression())
        self.expect_punct("]")
        return ast.ArrayLiteral(tuple(items))

    def finish_interval(self, start, left_closed: bool):
        self.expect_op("..")
        end = self.parse_expression()
        if self.current.is_punct("]"):
            right_closed = True
        elif self.current.is_punct(")"):
            right_closed = False
        else:
            raise self.error("Expected ']' or ')' to close interval")
        self.advance()
        return ast.IntervalLiteral(start, end, left_closed, right_closed)

    def parse_object(self):
        self.expect_punct("{")
        entries = []
        while not self.current.is_punct("}"):
            key_token = self.current
            if key_token.type in (TokenType.IDENTIFIER, TokenType.KEYWORD, TokenType.STRING):
                key = str(key_token.value)
            elif key_token.type == TokenType.NUMBER:
                key = str(key_token.value)
            else:
                raise self.error("Expected object key")
            self.advance()
            self.expect_op(":")
            entries.append((key, self.parse_expression()))
            if not self.current.is_punct(","):
                break
            self.advance()
        self.expect_punct("}")
        return ast.ObjectLiteral(tuple(entries))

    def parse_template(self, token: Token):
        parts = []
        for part in token.value:
            if isinstance(part, str):
                parts.append(part)
                continue
            source, offset = part
            try:
                parts.append(Parser(source).parse())
            except ExpressionSyntaxError as e:
                position = offset + (e.position or 0)
                raise ExpressionSyntaxError(
                    f"Invalid template interpolation: {e.message}",
                    expression=self.source,
                    position=position,
                ) from e
        return ast.Template(tuple(parts))


def parse(source: str, unary: bool = False):
    """Parse expression text into an AST."""
    return Parser(source, unary=unary).parse()

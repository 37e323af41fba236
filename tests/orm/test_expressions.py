"""Tests for the predicate grammar: tokenizer, parser and compilers."""

from __future__ import annotations

import pytest

from _support.blog import Post
from keystone.core.errors import ExpressionSyntaxError
from keystone.orm.builder import QueryBuilder, SqlId
from keystone.orm.expressions import (
    BoolOp,
    Compare,
    Literal,
    Member,
    Not,
    Param,
    compile_assignments,
    compile_like,
    compile_predicate,
    parse,
    tokenize,
)


@pytest.fixture
def table():
    return Post.descriptor_table()


class TestTokenize:
    def test_token_kinds(self):
        kinds = [t.kind for t in tokenize("views >= {0} && title != 'x'")]
        assert kinds == ["IDENT", "OP", "PARAM", "OP", "IDENT", "OP", "STRING", "EOF"]

    def test_keyword_operators(self):
        values = [t.value for t in tokenize("a and not b or c")][:-1]
        assert values == ["a", "&&", "!", "b", "||", "c"]

    def test_numbers(self):
        values = [t.value for t in tokenize("1 2.5 1_000")][:-1]
        assert values == [1, 2.5, 1000]

    def test_negative_number_after_operator(self):
        values = [t.value for t in tokenize("views > -3")][:-1]
        assert values == ["views", ">", -3]

    def test_escaped_quote(self):
        (token, _) = tokenize(r"'it\'s'")
        assert token.value == "it's"

    def test_named_parameter(self):
        (token, _) = tokenize(":title")
        assert token.kind == "PARAM"
        assert token.value == "title"

    def test_unexpected_character(self):
        with pytest.raises(ExpressionSyntaxError) as exc_info:
            tokenize("views $ 1")
        assert exc_info.value.position == 6

    def test_unterminated_string(self):
        with pytest.raises(ExpressionSyntaxError):
            tokenize("title == 'abc")


class TestParse:
    def test_precedence(self):
        node = parse("a == 1 || b == 2 && c == 3")
        assert isinstance(node, BoolOp) and node.op == "||"
        assert isinstance(node.operands[1], BoolOp) and node.operands[1].op == "&&"

    def test_parentheses(self):
        node = parse("(a == 1 || b == 2) && c")
        assert node.op == "&&"
        assert node.operands[0].op == "||"

    def test_lambda_alias(self):
        assert parse("e => e.views > 1") == Compare(">", Member("views", 7), Literal(1))

    def test_wrong_alias(self):
        with pytest.raises(ExpressionSyntaxError, match="Unknown alias"):
            parse("e => x.views > 1")

    def test_not(self):
        node = parse("!draft")
        assert isinstance(node, Not)
        assert node.operand == Member("draft", 1)

    def test_literals(self):
        assert parse("null") == Literal(None)
        assert parse("True") == Literal(True)

    def test_parameters(self):
        assert parse("{2}") == Param(2, 0)

    @pytest.mark.parametrize("text", ["", "a ==", "a == 1)", "(a == 1", "a == == 1", "{x}"])
    def test_syntax_errors(self, text):
        with pytest.raises(ExpressionSyntaxError):
            parse(text)


class TestCompilePredicate:
    def test_comparison(self, table):
        fragment = compile_predicate("views > {0}", table, (10,))
        assert fragment.text == "({0} > {1})"
        assert fragment.args == (SqlId("Views"), 10)

    def test_not_equal(self, table):
        assert compile_predicate("title != 'x'", table).text == "({0} <> {1})"

    def test_null_comparisons(self, table):
        assert compile_predicate("title == null", table).text == "({0} IS NULL)"
        assert compile_predicate("null != title", table).text == "({0} IS NOT NULL)"

    def test_none_parameter_becomes_is_null(self, table):
        fragment = compile_predicate("title == {0}", table, (None,))
        assert fragment.text == "({0} IS NULL)"
        assert fragment.args == (SqlId("Title"),)

    def test_bare_member_is_truth_test(self, table):
        fragment = compile_predicate("!draft", table)
        assert fragment.text == "NOT ({0} = {1})"
        assert fragment.args == (SqlId("Draft"), True)

    def test_boolean_operators(self, table):
        fragment = compile_predicate("views > 1 && (title == 'a' || title == 'b')", table)
        assert fragment.text == "(({0} > {1}) AND (({2} = {3}) OR ({4} = {5})))"

    def test_named_parameters(self, table):
        fragment = compile_predicate("views >= :min", table, named={"min": 5})
        assert fragment.args == (SqlId("Views"), 5)

    def test_columns_by_column_name(self, table):
        assert compile_predicate("CreatedAt != null", table).args == (SqlId("CreatedAt"),)

    def test_unknown_property(self, table):
        with pytest.raises(ExpressionSyntaxError, match="no column property 'nope'"):
            compile_predicate("nope == 1", table)

    def test_relations_are_not_columns(self, table):
        with pytest.raises(ExpressionSyntaxError):
            compile_predicate("author == 1", table)

    def test_missing_positional_argument(self, table):
        with pytest.raises(ExpressionSyntaxError, match="No argument"):
            compile_predicate("views > {1}", table, (1,))

    def test_missing_named_argument(self, table):
        with pytest.raises(ExpressionSyntaxError):
            compile_predicate("views > :min", table)

    def test_feeds_the_builder(self, table):
        fragment = compile_predicate("views > {0} && !draft", table, (10,))
        qb = QueryBuilder().select("*").from_("Posts").where(fragment.text, *fragment.args)
        assert qb.sql == 'SELECT *\nFROM "Posts"\nWHERE (("Views" > :p2) AND NOT ("Draft" = :p4))'
        assert qb.parameters == {"p2": 10, "p4": True}


class TestCompileLike:
    def test_like(self, table):
        fragment = compile_like("title == {0}", table, ("%orm%",))
        assert fragment.text == "({0} LIKE {1})"
        assert fragment.args == (SqlId("Title"), "%orm%")

    def test_not_like(self, table):
        assert compile_like("title != 'x%'", table).text == "({0} NOT LIKE {1})"

    def test_other_operators_are_unchanged(self, table):
        assert compile_like("views > 3", table).text == "({0} > {1})"


class TestCompileAssignments:
    def test_pairs(self, table):
        fragment = compile_assignments("views == {0} && title == 'x'", table, (0,))
        assert fragment.text == "{0} = {1}, {2} = {3}"
        assert fragment.args == (SqlId("Views"), 0, SqlId("Title"), "x")

    def test_null(self, table):
        fragment = compile_assignments("title == null", table)
        assert fragment.text == "{0} = NULL"

    @pytest.mark.parametrize("text", ["views > 1", "1 == views", "views == title"])
    def test_rejects_non_assignments(self, table, text):
        with pytest.raises(ExpressionSyntaxError):
            compile_assignments(text, table)

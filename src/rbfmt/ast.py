"""Syntax tree and comment types handed over by the front-end parser."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum

from rbfmt.span import Span


class NodeKind(Enum):
    # Program & statements
    PROGRAM = "program_node"
    STATEMENTS = "statements_node"

    # Definitions
    CLASS = "class_node"
    MODULE = "module_node"
    DEF = "def_node"
    SINGLETON_CLASS = "singleton_class_node"

    # Calls and blocks
    CALL = "call_node"
    BLOCK = "block_node"
    LAMBDA = "lambda_node"
    SUPER = "super_node"
    FORWARDING_SUPER = "forwarding_super_node"
    YIELD = "yield_node"
    BLOCK_ARGUMENT = "block_argument_node"

    # Conditionals
    IF = "if_node"
    UNLESS = "unless_node"
    ELSE = "else_node"
    CASE = "case_node"
    WHEN = "when_node"
    CASE_MATCH = "case_match_node"
    IN = "in_node"

    # Loops
    WHILE = "while_node"
    UNTIL = "until_node"
    FOR = "for_node"

    # Exception handling
    BEGIN = "begin_node"
    RESCUE = "rescue_node"
    ENSURE = "ensure_node"
    RESCUE_MODIFIER = "rescue_modifier_node"

    # Control flow
    RETURN = "return_node"
    BREAK = "break_node"
    NEXT = "next_node"
    REDO = "redo_node"
    RETRY = "retry_node"

    # Literals
    STRING = "string_node"
    INTERPOLATED_STRING = "interpolated_string_node"
    EMBEDDED_STATEMENTS = "embedded_statements_node"
    EMBEDDED_VARIABLE = "embedded_variable_node"
    X_STRING = "x_string_node"
    INTERPOLATED_X_STRING = "interpolated_x_string_node"
    SYMBOL = "symbol_node"
    INTERPOLATED_SYMBOL = "interpolated_symbol_node"
    REGULAR_EXPRESSION = "regular_expression_node"
    INTERPOLATED_REGULAR_EXPRESSION = "interpolated_regular_expression_node"
    INTEGER = "integer_node"
    FLOAT = "float_node"
    RATIONAL = "rational_node"
    IMAGINARY = "imaginary_node"
    ARRAY = "array_node"
    HASH = "hash_node"
    ASSOC = "assoc_node"
    ASSOC_SPLAT = "assoc_splat_node"
    KEYWORD_HASH = "keyword_hash_node"
    RANGE = "range_node"
    TRUE = "true_node"
    FALSE = "false_node"
    NIL = "nil_node"
    SELF = "self_node"
    SPLAT = "splat_node"
    SOURCE_FILE = "source_file_node"
    SOURCE_LINE = "source_line_node"
    SOURCE_ENCODING = "source_encoding_node"

    # Logical
    AND = "and_node"
    OR = "or_node"
    NOT = "not_node"
    PARENTHESES = "parentheses_node"
    DEFINED = "defined_node"
    FLIP_FLOP = "flip_flop_node"

    # Variables
    LOCAL_VARIABLE_READ = "local_variable_read_node"
    LOCAL_VARIABLE_WRITE = "local_variable_write_node"
    LOCAL_VARIABLE_TARGET = "local_variable_target_node"
    LOCAL_VARIABLE_OR_WRITE = "local_variable_or_write_node"
    LOCAL_VARIABLE_AND_WRITE = "local_variable_and_write_node"
    LOCAL_VARIABLE_OPERATOR_WRITE = "local_variable_operator_write_node"
    INSTANCE_VARIABLE_READ = "instance_variable_read_node"
    INSTANCE_VARIABLE_WRITE = "instance_variable_write_node"
    INSTANCE_VARIABLE_OR_WRITE = "instance_variable_or_write_node"
    INSTANCE_VARIABLE_AND_WRITE = "instance_variable_and_write_node"
    INSTANCE_VARIABLE_OPERATOR_WRITE = "instance_variable_operator_write_node"
    CLASS_VARIABLE_READ = "class_variable_read_node"
    CLASS_VARIABLE_WRITE = "class_variable_write_node"
    CLASS_VARIABLE_OR_WRITE = "class_variable_or_write_node"
    CLASS_VARIABLE_AND_WRITE = "class_variable_and_write_node"
    CLASS_VARIABLE_OPERATOR_WRITE = "class_variable_operator_write_node"
    GLOBAL_VARIABLE_READ = "global_variable_read_node"
    GLOBAL_VARIABLE_WRITE = "global_variable_write_node"
    GLOBAL_VARIABLE_OR_WRITE = "global_variable_or_write_node"
    GLOBAL_VARIABLE_AND_WRITE = "global_variable_and_write_node"
    GLOBAL_VARIABLE_OPERATOR_WRITE = "global_variable_operator_write_node"
    BACK_REFERENCE_READ = "back_reference_read_node"
    NUMBERED_REFERENCE_READ = "numbered_reference_read_node"
    MULTI_WRITE = "multi_write_node"
    MULTI_TARGET = "multi_target_node"

    # Constants (declaration parts of class/module definitions)
    CONSTANT_READ = "constant_read_node"
    CONSTANT_WRITE = "constant_write_node"
    CONSTANT_PATH = "constant_path_node"
    CONSTANT_PATH_WRITE = "constant_path_write_node"
    CONSTANT_OR_WRITE = "constant_or_write_node"
    CONSTANT_AND_WRITE = "constant_and_write_node"
    CONSTANT_OPERATOR_WRITE = "constant_operator_write_node"
    CONSTANT_PATH_OR_WRITE = "constant_path_or_write_node"
    CONSTANT_PATH_AND_WRITE = "constant_path_and_write_node"
    CONSTANT_PATH_OPERATOR_WRITE = "constant_path_operator_write_node"

    # Call/index compound assignment
    CALL_AND_WRITE = "call_and_write_node"
    CALL_OR_WRITE = "call_or_write_node"
    CALL_OPERATOR_WRITE = "call_operator_write_node"
    INDEX_AND_WRITE = "index_and_write_node"
    INDEX_OR_WRITE = "index_or_write_node"
    INDEX_OPERATOR_WRITE = "index_operator_write_node"

    # Parameters (declaration parts of method definitions)
    PARAMETERS = "parameters_node"
    BLOCK_PARAMETERS = "block_parameters_node"
    REQUIRED_PARAMETER = "required_parameter_node"
    OPTIONAL_PARAMETER = "optional_parameter_node"
    REST_PARAMETER = "rest_parameter_node"
    KEYWORD_PARAMETER = "keyword_parameter_node"
    REQUIRED_KEYWORD_PARAMETER = "required_keyword_parameter_node"
    OPTIONAL_KEYWORD_PARAMETER = "optional_keyword_parameter_node"
    KEYWORD_REST_PARAMETER = "keyword_rest_parameter_node"
    BLOCK_PARAMETER = "block_parameter_node"
    FORWARDING_PARAMETER = "forwarding_parameter_node"
    NO_KEYWORDS_PARAMETER = "no_keywords_parameter_node"
    FORWARDING_ARGUMENTS = "forwarding_arguments_node"

    # Pattern matching
    MATCH_PREDICATE = "match_predicate_node"
    MATCH_REQUIRED = "match_required_node"
    MATCH_WRITE = "match_write_node"
    MATCH_LAST_LINE = "match_last_line_node"
    INTERPOLATED_MATCH_LAST_LINE = "interpolated_match_last_line_node"
    ARRAY_PATTERN = "array_pattern_node"
    HASH_PATTERN = "hash_pattern_node"
    FIND_PATTERN = "find_pattern_node"
    CAPTURE_PATTERN = "capture_pattern_node"
    ALTERNATION_PATTERN = "alternation_pattern_node"
    PINNED_EXPRESSION = "pinned_expression_node"
    PINNED_VARIABLE = "pinned_variable_node"

    # Other statements
    ALIAS_METHOD = "alias_method_node"
    ALIAS_GLOBAL_VARIABLE = "alias_global_variable_node"
    UNDEF = "undef_node"
    PRE_EXECUTION = "pre_execution_node"
    POST_EXECUTION = "post_execution_node"
    IMPLICIT = "implicit_node"
    IMPLICIT_REST = "implicit_rest_node"


@dataclass(frozen=True, slots=True)
class UnknownKind:
    """Catch-all kind for any node type outside the recognized set."""

    name: str


Kind = NodeKind | UnknownKind

_KINDS_BY_NAME: dict[str, NodeKind] = {k.value: k for k in NodeKind}


def parse_kind(name: str) -> Kind:
    """Map a front-end node type name to a kind. Never fails."""
    kind = _KINDS_BY_NAME.get(name)
    if kind is None:
        return UnknownKind(name)
    return kind


# Children of class/module/def nodes that belong to the declaration itself
DECLARATION_KINDS = frozenset(
    {
        NodeKind.CONSTANT_READ,
        NodeKind.CONSTANT_WRITE,
        NodeKind.CONSTANT_PATH,
        NodeKind.PARAMETERS,
        NodeKind.REQUIRED_PARAMETER,
        NodeKind.OPTIONAL_PARAMETER,
        NodeKind.REST_PARAMETER,
        NodeKind.KEYWORD_PARAMETER,
        NodeKind.REQUIRED_KEYWORD_PARAMETER,
        NodeKind.OPTIONAL_KEYWORD_PARAMETER,
        NodeKind.KEYWORD_REST_PARAMETER,
        NodeKind.BLOCK_PARAMETER,
        NodeKind.FORWARDING_PARAMETER,
        NodeKind.NO_KEYWORDS_PARAMETER,
    }
)

PARAMETER_KINDS = DECLARATION_KINDS - {
    NodeKind.CONSTANT_READ,
    NodeKind.CONSTANT_WRITE,
    NodeKind.CONSTANT_PATH,
}


class CommentType(Enum):
    LINE = "line"  # # comment
    BLOCK = "block"  # =begin ... =end


class CommentPosition(Enum):
    LEADING = "leading"
    TRAILING = "trailing"
    INNER = "inner"


@dataclass(frozen=True, slots=True)
class Comment:
    """A source comment. The position hint is advisory only."""

    text: str
    span: Span
    type: CommentType = CommentType.LINE
    position: CommentPosition = CommentPosition.LEADING


@dataclass(frozen=True, slots=True)
class Formatting:
    """Formatting hints supplied by the front end."""

    indent_level: int = 0
    needs_blank_line_before: bool = False
    needs_blank_line_after: bool = False
    preserve_newlines: bool = False
    multiline: bool = False
    original_formatting: str | None = None


@dataclass(frozen=True, slots=True)
class Node:
    """A syntax tree node: kind, extent, children and front-end facts."""

    kind: Kind
    span: Span
    children: tuple[Node, ...] = ()
    metadata: dict[str, str] = field(default_factory=dict)
    comments: tuple[Comment, ...] = ()
    formatting: Formatting = Formatting()

    @property
    def is_unknown(self) -> bool:
        return isinstance(self.kind, UnknownKind)

    @property
    def kind_name(self) -> str:
        """The front-end name of this node's kind (e.g. ``class_node``)."""
        if isinstance(self.kind, UnknownKind):
            return self.kind.name
        return self.kind.value

    @property
    def is_multiline(self) -> bool:
        return self.span.is_multiline()

    def line_count(self) -> int:
        return self.span.line_count()

    def walk(self) -> Iterator[Node]:
        """Yield this node and all descendants, depth-first pre-order."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def last_line(self) -> int:
        """Largest end line anywhere in this subtree."""
        return max(n.span.end_line for n in self.walk())


def collect_comments(root: Node) -> list[Comment]:
    """Gather every attached comment into one discovery-ordered list."""
    comments: list[Comment] = []
    for node in root.walk():
        comments.extend(node.comments)
    return comments

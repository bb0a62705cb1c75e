from __future__ import annotations

from scholarize.parser.macros import expand_macros, expand_math_macros, extract_macros, remove_definitions


def test_extracts_arity_default_and_body() -> None:
    table = extract_macros(
        r"""
        \newcommand{\model}{\textsc{Net}}
        \newcommand{\norm}[1]{\lVert #1 \rVert}
        \newcommand{\greet}[1][World]{Hello #1}
        \renewcommand\pair[2]{(#1, #2)}
        """
    )

    assert table["model"].arity == 0
    assert table["model"].body == r"\textsc{Net}"
    assert table["norm"].arity == 1
    assert table["greet"].default == "World"
    assert table["pair"].arity == 2


def test_expands_arity_zero_and_one() -> None:
    table = extract_macros(r"\newcommand{\model}{Net}\newcommand{\norm}[1]{|#1|}")

    text = expand_macros(r"The \model{} uses $\norm{x}$ and \norm y.", table)

    assert text == "The Net uses $|x|$ and |y|."


def test_no_trailing_alphabetic_absorption() -> None:
    table = extract_macros(r"\newcommand{\x}{X}")

    assert expand_macros(r"\x \xy \x", table) == r"X \xy X"


def test_macro_after_line_break_is_expanded() -> None:
    table = extract_macros(r"\newcommand{\model}{Net}")

    assert expand_macros(r"a \\\model{} b", table) == r"a \\Net b"
    assert expand_macros(r"x & y \\ \model", table) == r"x & y \\ Net"


def test_escaped_backslash_before_name_is_not_a_macro() -> None:
    table = extract_macros(r"\newcommand{\model}{Net}")

    assert expand_macros(r"a \\model b", table) == r"a \\model b"


def test_nested_macros_reach_fixed_point() -> None:
    table = extract_macros(r"\newcommand{\a}{[\b]}\newcommand{\b}{\c\c}\newcommand{\c}{c}")

    assert expand_macros(r"\a", table) == "[cc]"


def test_recursive_macro_stops_with_diagnostic() -> None:
    table = extract_macros(r"\newcommand{\loop}{x\loop}")
    diagnostics = []

    text = expand_macros(r"\loop", table, max_iterations=5, diagnostics=diagnostics)

    assert text == "xxxxx\\loop"
    assert diagnostics and diagnostics[0].kind == "MacroParseError"


def test_optional_default_argument() -> None:
    table = extract_macros(r"\newcommand{\greet}[1][World]{Hello #1}")

    assert expand_macros(r"\greet, \greet[You]", table) == "Hello World, Hello You"


def test_multi_argument_macros_stay_in_body_and_reach_math_context() -> None:
    table = extract_macros(r"\newcommand{\pair}[2]{(#1, #2)}\def\ip#1#2{\langle #1, #2 \rangle}")

    assert expand_macros(r"$\pair{a}{b}$", table) == r"$\pair{a}{b}$"
    assert table["ip"].arity == 2
    assert table.math_macros()["\\pair"] == "(#1, #2)"
    assert expand_math_macros(r"\pair{a}{\ip{u}{v}}", table.math_macros()) == r"(a, \langle u, v \rangle)"


def test_declare_math_operator_and_let() -> None:
    table = extract_macros(
        r"\DeclareMathOperator{\Tr}{Tr}\DeclareMathOperator*{\argmax}{arg\,max}\let\eps=\varepsilon"
    )

    assert table["Tr"].body == r"\operatorname{Tr}"
    assert table["argmax"].body == r"\operatorname*{arg\,max}"
    assert table["eps"].body == r"\varepsilon"
    assert expand_macros(r"$\argmax_x \eps$", table) == r"$\operatorname*{arg\,max}_x \varepsilon$"


def test_ensuremath_macro_is_wrapped_outside_math() -> None:
    table = extract_macros(r"\newcommand{\vx}{\ensuremath{\mathbf{x}}}")

    assert table["vx"].math_only is True
    assert expand_macros(r"Let \vx{} be $\vx + 1$.", table) == r"Let $\mathbf{x}$ be $\mathbf{x} + 1$."


def test_boldmath_mbox_becomes_boldsymbol() -> None:
    table = extract_macros(r"\newcommand{\bx}{\mbox{\boldmath $x$}}")

    assert table["bx"].body == r"\boldsymbol{x}"


def test_unterminated_definition_is_skipped() -> None:
    diagnostics = []

    table = extract_macros(r"\newcommand{\bad}{oops \newcommand{\good}{G}", diagnostics=diagnostics)

    assert "bad" not in table
    assert table["good"].body == "G"
    assert diagnostics[0].kind == "MacroParseError"


def test_providecommand_does_not_override() -> None:
    table = extract_macros(r"\newcommand{\x}{first}\providecommand{\x}{second}")

    assert table["x"].body == "first"


def test_remove_definitions() -> None:
    text = "A\\newcommand{\\x}{X}B\\def\\y{Y}C"

    assert remove_definitions(text) == "ABC"

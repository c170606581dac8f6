"""Shared fixtures for Intention tests."""
from __future__ import annotations

import pytest

CALCULATOR_FEATURE = """\
@unit
Feature: Calculator

  Scenario Outline: adding numbers
    Given a calculator with <config>
    When adding <input>
    Then it returns <expected>

    Examples:
      | config | input | expected |
      | {}     | [1,2] | 3        |

  Scenario Outline: subtracting numbers
    Given a calculator with <config>
    When subtracting <input>
    Then it returns <expected>
    And nothing is logged

    Examples:
      | config | input | expected |
      | {}     | [3,1] | 2        |
"""

PARSER_FEATURE = """\
Feature: Repository parser

  Scenario Outline: parsing input
    Given the parser
    When parsing <input>
    Then it returns <expected>

    Examples:
      | input      | expected                      |
      | "octo/cat" | {"owner":"octo","repo":"cat"} |
"""

THREE_FEATURES = """\
@e2e @summary
Feature: End-to-End Summary

  Scenario Outline: generating specs for a repository
    Given the service with <config>
    When a user submits <input>
    Then the job finishes with <expected>

    Examples:
      | config       | input      | expected |
      | {"web":true} | "octo/cat" | "done"   |

@unit @insights
Feature: Execution Details

  Scenario Outline: parsing repository input
    Given the parser
    When parsing <input>
    Then it returns <expected>

    Examples:
      | input      | expected                      |
      | "octo/cat" | {"owner":"octo","repo":"cat"} |

@unit @edge @debug
Feature: Edge Cases & Diagnostics

  Scenario Outline: rejecting malformed input
    Given the parser
    When parsing <input>
    Then it throws <expected>

    Examples:
      | input | expected               |
      | ""    | "InvalidRepoReference" |
"""


@pytest.fixture
def calculator_feature() -> str:
    return CALCULATOR_FEATURE


@pytest.fixture
def parser_feature() -> str:
    return PARSER_FEATURE


@pytest.fixture
def three_features() -> str:
    return THREE_FEATURES


@pytest.fixture(autouse=True)
def quiet_console():
    """Fresh non-debug console for every test."""
    from intention.ui.console import Console, set_console

    set_console(Console(debug=False))
    yield

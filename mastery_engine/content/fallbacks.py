"""
Built-in default content.

Used whenever a content provider fails or returns malformed output. Every
node in the default diagnostic concept list has a question here.
"""

from __future__ import annotations

from mastery_engine.content.schemas import Explanation, Question, QuestionOption
from mastery_engine.core.models import KnowledgeNode


def _q(text: str, answers: list[str], correct: str, hint: str) -> Question:
    options = [
        QuestionOption(id=label, text=answer, is_correct=label == correct)
        for label, answer in zip("ABCD", answers, strict=True)
    ]
    return Question(question_text=text, options=options, hint=hint)


FALLBACK_QUESTIONS: dict[str, Question] = {
    "K.CC.1": _q("Count by tens: 10, 20, 30, ... What number comes next?", ["35", "40", "31", "50"], "B",
                 "Counting by tens adds 10 each time."),
    "K.CC.2": _q("Start at 5 and count forward. What are the next 3 numbers?",
                 ["6, 7, 8", "4, 3, 2", "6, 8, 10", "5, 5, 5"], "A",
                 "Counting forward means going to the next number each time."),
    "K.CC.3": _q("Which number tells how many stars? * * * * * * *", ["5", "6", "7", "8"], "C",
                 "Point to each star as you count."),
    "K.CC.4": _q("You count 4 apples: 1, 2, 3, 4. How many apples are there?", ["1", "3", "4", "5"], "C",
                 "The last number you say tells you the total."),
    "K.CC.5": _q("How many circles are there? o o o o o o o o o", ["7", "8", "9", "10"], "C",
                 "Count each circle carefully, one at a time."),
    "K.CC.6": _q("Group A has 5 blocks. Group B has 3 blocks. Which group has more?",
                 ["Group A", "Group B", "They are the same", "Cannot tell"], "A",
                 "Which number is bigger: 5 or 3?"),
    "K.CC.7": _q("Which number is greater: 4 or 7?", ["4", "7", "They are equal", "Neither"], "B",
                 "Which number do you reach later when counting?"),
    "1.OA.1": _q("You had 8 stickers and gave 3 away. How many are left?", ["11", "5", "6", "3"], "B",
                 "Giving away means fewer. Take 3 away from 8."),
    "1.OA.2": _q("What is 4 + 5 + 3?", ["10", "11", "12", "13"], "C",
                 "Add the first two numbers, then add the third."),
    "1.OA.3": _q("If 3 + 5 = 8, what does 5 + 3 equal?", ["7", "8", "9", "15"], "B",
                 "Does swapping the numbers change the sum?"),
    "1.OA.4": _q("10 - 6 = ? Think: what number plus 6 equals 10?", ["3", "4", "5", "16"], "B",
                 "Think: 6 + ? = 10."),
    "1.OA.5": _q("You are on number 7 and count on 3 more. Where do you land?", ["9", "10", "11", "4"], "B",
                 "Start at 7 and count: 8, 9, ..."),
    "1.OA.6": _q("What is 14 - 7?", ["6", "7", "8", "21"], "B", "Think of a doubles fact: 7 + 7."),
    "1.OA.7": _q("True or false? 5 + 3 = 4 + 4",
                 ["True", "False", "Cannot tell", "Only the left side is correct"], "A",
                 "Work out both sides separately."),
    "1.OA.8": _q("Find the missing number: 8 + ___ = 15", ["6", "7", "8", "23"], "B",
                 "Count up from 8 to 15."),
    "1.NBT.1": _q("What number comes right after 109?", ["110", "111", "1010", "100"], "A",
                  "Count forward from 109."),
    "1.NBT.2": _q("In the number 34, what does the digit 3 represent?",
                  ["3 ones", "3 tens (30)", "Just the number 3", "34"], "B",
                  "The left digit of a two-digit number counts tens."),
    "1.NBT.3": _q("Which symbol makes this correct? 47 ___ 52", [">", "<", "=", "None of these"], "B",
                  "Compare the tens first."),
    "1.NBT.4": _q("What is 37 + 20?", ["39", "47", "57", "55"], "C", "Adding 20 adds 2 tens."),
    "1.NBT.5": _q("What is 10 more than 63?", ["64", "73", "53", "163"], "B",
                  "Adding 10 raises the tens digit by 1."),
    "1.NBT.6": _q("What is 70 - 30?", ["30", "40", "50", "100"], "B", "7 tens minus 3 tens."),
}

DEFAULT_QUESTION = _q("What is 3 + 4?", ["6", "7", "8", "5"], "B", "Start at 3 and count on 4 more.")


def fallback_question(node: KnowledgeNode | str | None) -> Question:
    """Built-in question for a node, or the generic default."""
    code = node.code if isinstance(node, KnowledgeNode) else node
    question = FALLBACK_QUESTIONS.get(code or "", DEFAULT_QUESTION)
    return question.model_copy(update={"node_code": code})


def fallback_explanation(node: KnowledgeNode | None) -> Explanation:
    if node is None:
        return Explanation(
            title="Let's learn together",
            body="We'll look at this idea one small step at a time, then try a few problems.",
        )
    body = node.description or f"Let's explore {node.title} step by step."
    return Explanation(title=node.title, body=body, node_code=node.code)

import ast
import unittest
from pathlib import Path


_ROUTES = Path(__file__).resolve().parents[1] / "intervention_engine" / "routes" / "intervention_routes.py"


class InterventionRoutesLayeringTest(unittest.TestCase):
    def test_route_handlers_do_not_embed_sql_or_workflow_rules(self) -> None:
        source = _ROUTES.read_text(encoding="utf-8")
        module = ast.parse(source)
        lines = source.splitlines()

        forbidden_snippets = (
            "db.execute(",
            "db.transaction(",
            "TRANSITION_TABLE",
            "compare_and_set_status(",
        )

        checked = 0
        for node in module.body:
            if not isinstance(node, ast.FunctionDef):
                continue
            decorator_src = "\n".join(lines[d.lineno - 1] for d in node.decorator_list)
            if "@intervention_bp.route" not in decorator_src:
                continue

            checked += 1
            body_src = "\n".join(lines[node.lineno - 1 : node.end_lineno])
            for snippet in forbidden_snippets:
                self.assertNotIn(
                    snippet,
                    body_src,
                    msg=f"Route handler `{node.name}` should not contain `{snippet}`",
                )
        self.assertGreater(checked, 10)


if __name__ == "__main__":
    unittest.main()

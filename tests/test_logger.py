import sys

from medreminder.logger import logger, rule_logger, setup_logging


def test_delivery_records_go_to_their_own_file(tmp_path):
    log_file = tmp_path / "logs" / "medreminder.log"
    setup_logging("DEBUG", log_file, console_level="ERROR")
    try:
        logger.info("plain line")
        rule_logger("r1", "2024-06-12T07:00:00.000Z").info("delivered")
    finally:
        logger.remove()
        logger.add(sys.stderr)

    delivery = (tmp_path / "logs" / "medreminder_delivery.log").read_text(encoding="utf-8")
    assert "r1 | 2024-06-12T07:00:00.000Z | delivered" in delivery
    assert "plain line" not in delivery
    assert "plain line" in log_file.read_text(encoding="utf-8")

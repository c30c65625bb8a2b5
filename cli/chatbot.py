#!/usr/bin/env python3
"""
Interactive WhatsApp-style flow simulator for the terminal
"""

import argparse
import json
import uuid
import os
import sys
import logging
from typing import Optional
from dotenv import load_dotenv
from pydantic import ValidationError

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from core.config import load_settings
from core.dispatcher import ConversationDispatcher
from core.interpreter import FlowInterpreter
from core.models import ExecutionCursor
from core.runtime.graph_info import load_and_validate
from core.sinks import PacedSink, PrintSink
from core.timers import ThreadingTimerService
from core.triggers import Trigger
from storage.context_store import ContextStore

load_dotenv()


def setup_logging(verbose: bool = False):
    """Setup logging configuration"""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler('chatbot.log')
        ]
    )


def print_session_info(cursor: Optional[ExecutionCursor]):
    if cursor is None:
        print("Nenhuma conversa ativa.")
        return
    print(f"\n Sessão:")
    print(f"   Session ID: {cursor.conversation_id}")
    print(f"   Step: {cursor.step_index}")
    print(f"   State: {cursor.state.value}")
    print(f"   Countdown: {cursor.seconds_left}s")
    if cursor.outcome:
        print(f"   Outcome: {cursor.outcome.value}")
    if cursor.collected_data:
        print(f"   Collected data:")
        for line in cursor.summary().splitlines():
            print(f"     - {line}")
    for diagnostic in cursor.diagnostics:
        print(f"   ⚠️  {diagnostic}")


def validate_only(config_path: str) -> bool:
    """Lint the flow without running it"""
    try:
        print(f"Validating flow: {config_path}")
        runtime = load_and_validate(config_path)
        report = runtime.report
        for warning in report.warnings:
            print(f"   ⚠️  {warning}")
        for error in report.errors:
            print(f"   ❌ {error}")
        if not report.ok:
            print(f"❌ Flow has {len(report.errors)} error(s)")
            return False
        print(f"✅ Flow validation completed successfully!")
        print(f"   Total steps: {len(runtime.flow.steps)}")
        print(f"   Entry step: {report.entry}")
        return True
    except ValueError as e:
        print(f"❌ Flow validation failed: {e}")
        return False


def main():
    parser = argparse.ArgumentParser(
        description="Simulador de fluxo de atendimento",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Basic usage
  python -m cli.chatbot --config config/sample_flow.json

  # Validation only
  python -m cli.chatbot --config config/sample_flow.json --validate-only

  # Short inactivity timeout and keyword triggers
  python -m cli.chatbot --config config/sample_flow.json --timeout 30 --triggers triggers.json
        """
    )

    parser.add_argument(
        '--config',
        required=True,
        help='Path to the flow JSON file'
    )

    parser.add_argument(
        '--session-id',
        help='Use specific conversation ID (default: generate new)'
    )

    parser.add_argument(
        '--triggers',
        help='Path to a JSON list of keyword triggers'
    )

    parser.add_argument(
        '--redis',
        action='store_true',
        help='Use Redis for cursor snapshots (default: in-memory)'
    )

    parser.add_argument(
        '--timeout',
        type=int,
        help='Override the inactivity handoff timeout, in seconds (0 disables it)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )

    parser.add_argument(
        '--validate-only',
        action='store_true',
        help='Validate the flow and exit'
    )

    args = parser.parse_args()

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    if args.validate_only:
        success = validate_only(args.config)
        sys.exit(0 if success else 1)

    try:
        logger.info(f"Loading flow from: {args.config}")
        runtime = load_and_validate(args.config)

        settings = load_settings()
        if args.timeout is not None:
            settings.auto_handoff_seconds = args.timeout

        triggers = []
        if args.triggers:
            with open(args.triggers, "r", encoding="utf-8") as f:
                triggers = [Trigger.model_validate(t) for t in json.load(f)]

        timers = ThreadingTimerService()
        interpreter = FlowInterpreter(
            runtime.flow,
            PacedSink(PrintSink(), settings.typing_delay_ms),
            timers,
            settings,
            store=ContextStore(use_redis=args.redis),
        )
        dispatcher = ConversationDispatcher(interpreter, triggers, settings)

        session_id = args.session_id or str(uuid.uuid4())
        print(f"Starting conversation: {session_id}")

        print("\n" + "="*60)
        print("Simulador iniciado")
        print("   Comandos:")
        print("   - 'quit', 'exit', 'q': sair")
        print("   - 'reset': reiniciar o fluxo")
        print("   - 'info': mostrar a sessão")
        print("="*60)
        interpreter.start(session_id)

        while True:
            try:
                user_input = input("\n 👤 Você> ").strip()

                if not user_input:
                    continue

                if user_input.lower() in ['quit', 'exit', 'q']:
                    print("\n Encerrando.")
                    break

                elif user_input.lower() == 'reset':
                    dispatcher.release(session_id)
                    interpreter.restart(session_id)
                    continue

                elif user_input.lower() == 'info':
                    print_session_info(interpreter.get_cursor(session_id))
                    continue

                result = dispatcher.handle_message(session_id, user_input)

                if args.verbose:
                    print(f"   [Debug] Handled by: {result.handled_by} ({result.status.value})")
                    if result.turn:
                        print(f"   [Debug] Step: {result.turn.step_id} state={result.turn.state.value}")
                        print(f"   [Debug] Data: {result.turn.collected_data}")

                cursor = interpreter.get_cursor(session_id)
                if cursor is not None and cursor.is_terminal:
                    print(f"\nConversa encerrada ({cursor.outcome.value})")
                    print_session_info(cursor)
                    restart = input("\nIniciar uma nova conversa? (s/n): ").strip().lower()
                    if restart in ['s', 'sim', 'y', 'yes']:
                        session_id = str(uuid.uuid4())
                        interpreter.start(session_id)
                    else:
                        break

            except KeyboardInterrupt:
                print("\n\n Encerrando.")
                break
            except EOFError:
                print("\n\nFim da entrada.")
                break

        timers.cancel_all()

    except FileNotFoundError as e:
        print(f"Arquivo não encontrado: {e}")
        sys.exit(1)
    except json.JSONDecodeError as e:
        print(f"JSON inválido: {e}")
        sys.exit(1)
    except (ValueError, ValidationError) as e:
        logger.error(f"Initialization failed: {e}")
        print(f"Falha ao iniciar: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Terminal note-reading drill using the microphone and/or a MIDI keyboard.

Every answer source is funnelled onto the asyncio loop thread, so the
session handles one answer at a time.

Usage:
    python live_practice.py --mic --midi --range treble_mid --difficulty intermediate
    Type a MIDI number to answer, "n" for the next card, "r" to reset stats, "q" to quit.
"""

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv

from readnote.config import AppConfig, create_store
from readnote.models.settings import RANGES, Difficulty
from readnote.session.manager import AnswerOutcome, ConfigurationError, PracticeSession
from readnote.tools.audio_session import SoundDeviceSession
from readnote.tools.midi_input import MidiInput
from readnote.tools.pitch_detection import PitchDetector

logger = logging.getLogger("live_practice")


def print_target(session: PracticeSession) -> None:
    label = session.target_label()
    if label is None:
        print("No notes to practise with this range.")
    else:
        print(f"\nPlay: {label}")


def print_outcome(outcome: AnswerOutcome) -> None:
    print(f"{outcome.feedback.text}   score={outcome.score} streak={outcome.streak}")


async def read_commands(session: PracticeSession) -> None:
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            return
        cmd = line.strip().lower()
        if cmd == "q":
            return
        try:
            if cmd == "n":
                session.next_card()
            elif cmd == "r":
                session.reset_stats()
            elif cmd.isdigit():
                # the outcome listener prints the next card
                session.submit_answer(int(cmd))
                continue
            else:
                print("Type a MIDI number, n, r or q")
                continue
        except ConfigurationError as e:
            print(f"Configuration error: {e}")
            continue
        print_target(session)


async def main(args) -> int:
    load_dotenv()
    config = AppConfig.from_env()
    if args.store:
        config.store = args.store
    logging.basicConfig(level=config.log_level, format="%(levelname)s %(name)s: %(message)s")

    session = PracticeSession("cli", store=create_store(config))
    try:
        session.update_settings(
            range_id=args.range,
            difficulty=args.difficulty,
        )
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        return 1

    loop = asyncio.get_running_loop()

    def on_outcome(outcome: AnswerOutcome) -> None:
        print_outcome(outcome)
        print_target(session)

    session.add_listener(on_outcome)

    detector = None
    if args.mic:
        detector = PitchDetector(SoundDeviceSession(device=args.device), on_pitch=session.on_detected_pitch)
        await detector.start()
        print(detector.status_message)

    midi_input = None
    if args.midi:
        # mido calls back on its own thread; hand the note to the loop
        midi_input = MidiInput(lambda midi: loop.call_soon_threadsafe(session.submit_external, midi))
        midi_input.open()
        print(midi_input.status)

    print_target(session)
    try:
        await read_commands(session)
    finally:
        if detector is not None:
            detector.stop()
        if midi_input is not None:
            midi_input.close()

    summary = session.get_session_summary()
    print(f"\nFinal score: {summary['score']}")
    return 0


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Note-reading drill")
    parser.add_argument("--range", default=RANGES[0].id, choices=[r.id for r in RANGES])
    parser.add_argument("--difficulty", default=Difficulty.BEGINNER.value, choices=[d.value for d in Difficulty])
    parser.add_argument("--mic", action="store_true", help="Answer by playing into the microphone")
    parser.add_argument("--device", type=int, default=None, help="Input device index for the microphone")
    parser.add_argument("--midi", action="store_true", help="Answer on the first MIDI input")
    parser.add_argument("--store", choices=["memory", "file", "postgres"], default=None)
    return parser.parse_args(argv)


if __name__ == "__main__":
    sys.exit(asyncio.run(main(parse_args())))

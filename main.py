#!/usr/bin/env python3
#----------------------------------------------------------------------------------------------------------------------
#    main.py
#----------------------------------------------------------------------------------------------------------------------
# Command-line simulation of the quadruped leg animator.
# Walks a body along +Z (optionally turning) over flat, hilly or missing ground
# and prints the leg status at a fixed interval.
#----------------------------------------------------------------------------------------------------------------------

import sys
import math
import random
import signal
import logging
import argparse

from body_motion import BodyPose
from config_manager import load_config
from leg_animator import LegAnimator
from terrain import FlatGround, HeightfieldGround, NoGround

_running = True


def _main_sigterm_handler(signum, frame):
    """Handle SIGTERM by ending the simulation loop."""
    global _running
    print(f"\n[MAIN] Signal {signum} received, stopping...", flush=True)
    _running = False


def _make_probe(name: str):
    if name == "hills":
        return HeightfieldGround(lambda x, z: 0.08 * math.sin(1.7 * x) * math.cos(1.3 * z))
    if name == "void":
        return NoGround()
    return FlatGround(0.0)


def run(args) -> int:
    """Run the simulation. Returns the number of support violations seen."""
    config = load_config(args.config)
    body_height = config.layout.body_height
    pose = BodyPose.from_euler([0.0, body_height, 0.0])
    animator = LegAnimator(pose, config, _make_probe(args.terrain), rng=random.Random(args.seed))

    ticks = int(args.seconds / args.dt)
    report_every = max(1, int(args.report / args.dt))
    heading = 0.0
    x = z = 0.0
    violations = 0
    steps = 0

    for i in range(ticks):
        if not _running:
            break
        heading += args.turn * args.dt
        x += math.sin(math.radians(heading)) * args.speed * args.dt
        z += math.cos(math.radians(heading)) * args.speed * args.dt
        pose = BodyPose.from_euler([x, body_height, z], yaw_deg=heading)

        was_stepping = [leg.is_stepping for leg in animator.legs]
        animator.tick(pose, args.dt)
        steps += sum(1 for leg, was in zip(animator.legs, was_stepping) if leg.is_stepping and not was)
        if not animator.support_ok:
            violations += 1

        if i % report_every == 0:
            print(animator.status_string(), flush=True)

    print(f"Simulated {animator.time:.2f}s, {steps} steps started, "
          f"{violations} support violations", flush=True)
    return violations


#----------------------------------------------------------------------------------------------------------------------
# Entry Point
#----------------------------------------------------------------------------------------------------------------------

def main():
    """Entry point for the animator simulation."""
    parser = argparse.ArgumentParser(description="Quadruped leg animator simulation")
    parser.add_argument("-c", "--config", default=None, help="Path to animator.ini")
    parser.add_argument("--seconds", type=float, default=5.0, help="Simulated time (s)")
    parser.add_argument("--dt", type=float, default=1.0 / 60.0, help="Tick length (s)")
    parser.add_argument("--speed", type=float, default=0.5, help="Body speed (units/s)")
    parser.add_argument("--turn", type=float, default=0.0, help="Turn rate (deg/s)")
    parser.add_argument("--terrain", choices=["flat", "hills", "void"], default="flat")
    parser.add_argument("--report", type=float, default=0.25, help="Status print interval (s)")
    parser.add_argument("--seed", type=int, default=0, help="Stagger jitter seed")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(asctime)s %(name)s %(levelname)s: %(message)s")
    signal.signal(signal.SIGTERM, _main_sigterm_handler)

    try:
        violations = run(args)
    except KeyboardInterrupt:
        print("\nSimulation interrupted.")
        return
    sys.exit(1 if violations else 0)


if __name__ == "__main__":
    main()

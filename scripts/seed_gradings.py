#!/usr/bin/env python3
"""
Script to post a batch of gradings to a running API and print the resulting leaderboard
"""
import argparse
import random
import sys

import requests


def grade_all(base_url, participants, attempts):
    tasks = requests.get(f"{base_url}/api/tasks", timeout=10).json()
    if not tasks:
        print("No tasks configured, nothing to grade")
        return 0

    graded = 0
    for _ in range(attempts):
        task = random.choice(tasks)
        scores = {name: random.randint(0, cap) for name, cap in task["metrics"].items()}
        body = {
            "participant_id": random.choice(participants),
            "task_id": task["id"],
            "scores": scores,
        }
        try:
            response = requests.post(f"{base_url}/api/submissions/grade", json=body, timeout=10)
        except requests.RequestException as e:
            print(f"❌ Error grading {body['participant_id']}/{task['id']}: {e}")
            continue

        if response.status_code == 200:
            graded += 1
            print(f"✅ Graded {body['participant_id']} on {task['title']}: {sum(scores.values())}")
        else:
            print(f"❌ Failed to grade {body['participant_id']}/{task['id']}: {response.status_code} {response.text}")
    return graded


def print_leaderboard(base_url):
    entries = requests.post(f"{base_url}/api/leaderboard/refresh", timeout=30).json()["entries"]
    print("\nLeaderboard:")
    for e in entries:
        medal = f" ({e['medal']})" if e["medal"] else ""
        print(f"  {e['rank']:>3}. {e['name']:<24} {e['tasks_completed']:>2} tasks  {e['total_score']:>8.1f}{medal}")


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("participants", nargs="+", help="Participant ids to grade")
    parser.add_argument("--url", default="http://localhost:8000")
    parser.add_argument("--attempts", type=int, default=10)
    args = parser.parse_args()

    try:
        graded = grade_all(args.url.rstrip("/"), args.participants, args.attempts)
        print(f"\nGraded {graded}/{args.attempts} submissions")
        print_leaderboard(args.url.rstrip("/"))
    except requests.RequestException as e:
        print(f"❌ API unreachable: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

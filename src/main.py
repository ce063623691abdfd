#!/usr/bin/env python3
"""
Offline bracket resolution for a predictions file.

Usage:
    python src/main.py predictions.yaml
    python src/main.py predictions.yaml --tournament data/tournament.yaml

The predictions file lists every group's six scorelines, plus optional
manual orders for tied teams:

    groups:
      A:
        - {home: mex, away: rsa, score: 2-0}
        ...
    tiebreaks:
      A: [[kor, rsa]]
    third_place_tiebreaks: [[sco, civ]]

Exit codes:
    0: Success
    1: Invalid predictions file
    2: Inconsistent tournament data
"""
import argparse
import os
import sys

import yaml

from engine.exceptions import DomainInvariantError, ValidationError
from engine.models import MatchPrediction
from engine.bracket import KnockoutBracketResolver
from engine.phases import KnockoutPhase
from engine.standings import apply_manual_order, calculate_group_standings, effective_order
from engine.third_places import rank_best_third_places, select_third_places
from tournament_data import load_allocation_table, load_tournament

BASE_DIR = os.path.dirname(os.path.dirname(__file__))


def parse_score(text):
    try:
        home, away = str(text).split('-')
        return int(home), int(away)
    except ValueError:
        raise ValidationError(f"Invalid score '{text}', expected e.g. 2-1") from None


def load_predictions(file_path):
    with open(file_path, mode='r', encoding='utf-8') as file:
        return yaml.safe_load(file) or {}


def group_match_predictions(tournament, group, entries):
    """Turn {home, away, score} entries into predictions on the group's fixtures."""
    fixtures = {}
    for match in tournament.matches_for_group(group.id):
        fixtures[(match.home_team_id, match.away_team_id)] = match

    predictions = []
    for entry in entries or []:
        home, away = entry.get('home'), entry.get('away')
        home_score, away_score = parse_score(entry.get('score'))
        match = fixtures.get((home, away))
        if match is None:
            match = fixtures.get((away, home))
            home_score, away_score = away_score, home_score
        if match is None:
            raise ValidationError(f"Group {group.letter} has no fixture between {home} and {away}")
        predictions.append(MatchPrediction(match.id, home_score, away_score,
                                           home_team_id=match.home_team_id, away_team_id=match.away_team_id))
    return predictions


def apply_tiebreaks(rows, orders):
    for ordered in orders or []:
        wanted = set(ordered)
        cluster = None
        for row in rows:
            if row.tiebreak_group is not None and \
                    {r.team_id for r in rows if r.tiebreak_group == row.tiebreak_group} == wanted:
                cluster = row.tiebreak_group
                break
        if cluster is None:
            raise ValidationError(f"No tie between exactly {sorted(wanted)}")
        rows = apply_manual_order(rows, cluster, ordered)
    return rows


def print_table(title, rows, tournament):
    print(f"\n{title}")
    for row in effective_order(rows):
        team = tournament.team(row.team_id)
        marker = f" ={row.tiebreak_group}" if row.has_tiebreak_conflict else ""
        print(f"  {row.position}. {team.name:<28} {row.points:>2} pts  "
              f"{row.goals_for:>2}:{row.goals_against:<2} ({row.goal_difference:+d}){marker}")


def resolve(tournament, allocation_table, data):
    """Compute tables, best thirds and Round of 32 pairings from a parsed predictions file."""
    groups_data = data.get('groups') or {}
    tiebreaks = data.get('tiebreaks') or {}

    standings = {}
    for group in tournament.groups_in_order():
        predictions = group_match_predictions(tournament, group, groups_data.get(group.letter))
        rows = calculate_group_standings(group.id, group.team_ids, predictions)
        standings[group.id] = apply_tiebreaks(rows, tiebreaks.get(group.letter))

    best_thirds = rank_best_third_places(select_third_places(standings))
    best_thirds = apply_tiebreaks(best_thirds, data.get('third_place_tiebreaks'))

    resolver = KnockoutBracketResolver(tournament.group_letter, allocation_table)
    all_rows = [row for rows in standings.values() for row in rows]
    fixtures = tournament.matches_for_phase(KnockoutPhase.ROUND_OF_32)
    round_of_32 = resolver.resolve_round_of_32(all_rows, best_thirds, fixtures)
    return standings, best_thirds, round_of_32


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Resolve group tables, best third places and the Round of 32 from predictions'
    )
    parser.add_argument('predictions', help='Predictions YAML file')
    parser.add_argument(
        '--tournament',
        default=os.path.join(BASE_DIR, 'data', 'tournament.yaml'),
        help='Tournament reference data (default: data/tournament.yaml)'
    )
    parser.add_argument(
        '--allocation',
        default=os.path.join(BASE_DIR, 'data', 'third_place_allocation.yaml'),
        help='Third place allocation table (default: data/third_place_allocation.yaml)'
    )
    args = parser.parse_args(argv)

    try:
        tournament = load_tournament(args.tournament)
        allocation_table = load_allocation_table(args.allocation)
    except DomainInvariantError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    try:
        standings, best_thirds, round_of_32 = resolve(tournament, allocation_table,
                                                      load_predictions(args.predictions))
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except DomainInvariantError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    for group in tournament.groups_in_order():
        print_table(f"Group {group.letter}", standings[group.id], tournament)

    print("\n--- Best Third Places ---")
    for row in effective_order(best_thirds):
        team = tournament.team(row.team_id)
        letter = tournament.group_letter(row.from_group_id)
        marker = f" ={row.tiebreak_group}" if row.has_tiebreak_conflict else ""
        print(f"  {row.ranking_position}. {team.name:<28} (Group {letter}) {row.points:>2} pts  "
              f"({row.goal_difference:+d}){marker}")

    print("\n--- Round of 32 ---")
    for fixture in tournament.matches_for_phase(KnockoutPhase.ROUND_OF_32):
        home, away = round_of_32[fixture.id]
        print(f"  Match {fixture.match_number}: {tournament.team(home).name} vs {tournament.team(away).name}")
    return 0


if __name__ == '__main__':
    sys.exit(main())

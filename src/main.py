# Command line entry point: print a tournament's draw from the data directory

import argparse
import os
from engine.advancement import group_knockout_rounds
from engine.models import RoundType, Team
from engine.pools import PoolAssigner
from engine.yaml_store import YamlStore


def team_label(side, registrations):
    if not isinstance(side, Team):
        return 'BYE'
    registration = registrations.get(side.registration_id)
    if registration is None:
        return side.registration_id
    seed = f'[{registration.seed_number}] ' if registration.seed_number else ''
    return f'{seed}{registration.player1_id} / {registration.player2_id}'


def print_pools(store, tournament_id, registrations):
    pools = store.pools.list(tournament_id)
    if not pools:
        return
    standings = PoolAssigner(store).standings(tournament_id)
    for pool in pools:
        print(f"\n# Pool {pool.pool_number} ({pool.status.value})")
        for row in standings[pool.id]:
            name = team_label(Team(row['registration_id']), registrations)
            print(f"  {row['position']}. {name}  W{row['wins']} L{row['losses']} "
                  f"sets {row['set_diff']:+d} games {row['game_diff']:+d}")


def print_bracket(store, tournament_id, registrations):
    matches = store.matches.list(tournament_id)
    rounds = group_knockout_rounds(matches)
    third_place = [m for m in matches if m.round_type == RoundType.THIRD_PLACE]
    if third_place:
        rounds[RoundType.THIRD_PLACE] = third_place
    for round_type, round_matches in rounds.items():
        print(f"\n# {round_type.value.replace('_', ' ').title()}")
        for match in round_matches:
            team1 = team_label(match.team1, registrations)
            team2 = team_label(match.team2, registrations)
            result = ''
            if match.is_decided:
                winner = team_label(Team(match.winner_registration_id), registrations)
                score = match.score.final_score if match.score else match.status.value
                result = f"  -> {winner} ({score})"
            print(f"  M{match.match_order}: {team1} vs {team2}{result}")


def main():
    script_dir = os.path.dirname(__file__)
    base_dir = os.path.dirname(script_dir)

    parser = argparse.ArgumentParser(description='Print the draw of a padel tournament.')
    parser.add_argument('tournament_id', nargs='?', help='Tournament id (omit to list tournaments)')
    parser.add_argument('--data-dir', default=os.environ.get('PADEL_DATA_DIR', os.path.join(base_dir, 'data')))
    args = parser.parse_args()

    store = YamlStore(args.data_dir)
    if not args.tournament_id:
        tournaments = store.tournaments.list()
        if not tournaments:
            print(f"No tournaments found in {args.data_dir}")
        for tournament in tournaments:
            print(f"{tournament.id}  {tournament.name}  ({tournament.status.value})")
        return

    tournament = store.tournaments.get(args.tournament_id)
    if tournament is None:
        print(f"Tournament {args.tournament_id} not found in {args.data_dir}")
        return

    print(f"{tournament.name} - {tournament.format.value}, {tournament.match_format} ({tournament.status.value})")
    registrations = {r.id: r for r in store.registrations.list(tournament.id)}
    print_pools(store, tournament.id, registrations)
    print_bracket(store, tournament.id, registrations)


if __name__ == '__main__':
    main()

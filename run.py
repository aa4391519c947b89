import os
from functools import partial
from datetime import datetime
from argparse import ArgumentParser, SUPPRESS
from GA import ImageEvolutionTask, GeneticAlgorithm, CROSSOVER_METHODS
from utils import load_target_image, save_image, save_evolution_progress_as_gif
from config import (
    INPUT_DIR,
    OUTPUT_DIR,
    OUTPUT_FILENAME_SUFFIX,
    TARGET_FILENAME_SUFFIX,
    SAMPLE_IMAGE_NAME,
    ANIMATION_FILENAME_SUFFIX,
    ANIMATION_DURATION,
    ANIMATION_MAX_FRAMES,
    DEFAULT_RUN_PARAMS,
    TASK_PARAMS,
    GA_PARAMS
)


def save_output(save_func, description: str, *args) -> None:
    """Run a save function, reporting a failure instead of raising it."""
    output_path = args[-1]

    try:
        save_func(*args)
    except (OSError, ValueError) as e:
        print(f'Failed to save {description}: {e}')
    else:
        print(f'{description.capitalize()} saved as {output_path}')


if __name__ == '__main__':
    parser = ArgumentParser(add_help=False, description='Run per-pixel image evolution using a genetic algorithm.')
    optional = parser.add_argument_group('optional arguments')

    optional.add_argument(
        '-h',
        '--help',
        action='help',
        default=SUPPRESS,
        help='show this help message and exit'
    )
    optional.add_argument('-i', '--image_filename', default=None, type=str,
                          help=f'input image filename (looked up in {INPUT_DIR} directory), '
                               'a generated gradient is used if missing or unreadable')
    optional.add_argument('--n_iter', default=DEFAULT_RUN_PARAMS['n_iter'], type=int,
                          help='number of algorithm iterations (generations)')
    optional.add_argument('--img_size', default=TASK_PARAMS['img_size'], type=int,
                          help='side length of the evolved square image')
    optional.add_argument('--report_step', default=DEFAULT_RUN_PARAMS['report_step'], type=int,
                          help='frequency at which fitness statistics are reported')
    optional.add_argument('--seed', default=DEFAULT_RUN_PARAMS['seed'], type=int,
                          help='random seed making the run reproducible')
    optional.add_argument('--n_workers', default=DEFAULT_RUN_PARAMS['n_workers'], type=int,
                          help='number of threads stepping the pixel populations')
    optional.add_argument('--crossover_method', default=GA_PARAMS['crossover_method'], choices=CROSSOVER_METHODS,
                          help='crossover operator used to combine parents')
    optional.add_argument('--no_animation', action='store_false', dest='animation',
                          help='do not save an evolution progress as a GIF animation')
    args = parser.parse_args()

    image_path = None if args.image_filename is None else os.path.join(INPUT_DIR, args.image_filename)
    target_img, loaded = load_target_image(image_path, args.img_size)

    if loaded:
        image_name = os.path.splitext(os.path.basename(args.image_filename))[0]
        print(f'Target image loaded from {image_path}')
    else:
        image_name = SAMPLE_IMAGE_NAME
        print(f'Could not load {image_path}, using a generated sample image' if image_path is not None
              else 'No input image given, using a generated sample image')

    task = ImageEvolutionTask(target_img)
    ga = GeneticAlgorithm(**{**GA_PARAMS, 'crossover_method': args.crossover_method})

    best_img, frames, _ = ga.fit(
        task=task,
        n_iter=args.n_iter,
        report_step=args.report_step,
        seed=args.seed,
        n_workers=args.n_workers
    )

    os.makedirs(OUTPUT_DIR, exist_ok=True)
    current_time = datetime.today().strftime('%Y-%m-%d_%H-%M')

    output_filename = f'{image_name}_{OUTPUT_FILENAME_SUFFIX}_{current_time}.png'
    save_output(save_image, 'result image', best_img, os.path.join(OUTPUT_DIR, output_filename))

    if args.animation:
        animation_filename = f'{image_name}_{ANIMATION_FILENAME_SUFFIX}_{current_time}.gif'
        save_output(
            partial(save_evolution_progress_as_gif, max_frames=ANIMATION_MAX_FRAMES),
            'animation',
            frames,
            ANIMATION_DURATION,
            os.path.join(OUTPUT_DIR, animation_filename)
        )

    target_filename = f'{image_name}_{TARGET_FILENAME_SUFFIX}_{current_time}.png'
    save_output(save_image, 'target image', target_img, os.path.join(OUTPUT_DIR, target_filename))

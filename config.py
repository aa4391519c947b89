INPUT_DIR = './inputs'
OUTPUT_DIR = './outputs'
OUTPUT_FILENAME_SUFFIX = 'evolved'
TARGET_FILENAME_SUFFIX = 'target'
SAMPLE_IMAGE_NAME = 'sample'
ANIMATION_FILENAME_SUFFIX = 'evolution_progress'
ANIMATION_DURATION = 200
ANIMATION_MAX_FRAMES = 50

DEFAULT_RUN_PARAMS = {
    'n_iter': 50,
    'report_step': 25,
    'seed': None,
    'n_workers': 1
}

TASK_PARAMS = {
    'img_size': 100
}

GA_PARAMS = {
    'population_size': 6,
    'tournament_size': 3,
    'elite_size': 2,
    'crossover_rate': 0.8,
    'mutation_rate': 0.05,
    'forced_mutation_rate': 0.1,
    'crossover_method': 'uniform'
}

import logging
import os

import hydra
from hydra.core.hydra_config import HydraConfig
from omegaconf import DictConfig, OmegaConf

import fash
from fash.data_loader import load_units

log = logging.getLogger(__name__)


@hydra.main(version_base=None, config_path="conf", config_name="config")
def main(cfg: DictConfig) -> None:
    log.info("Running with config:\n%s", OmegaConf.to_yaml(cfg))

    # Load data
    data_cfg = cfg.data
    data_path = hydra.utils.to_absolute_path(data_cfg.path)
    units = load_units(
        data_path,
        unit_col=data_cfg.unit_col,
        time_col=data_cfg.time_col,
        value_col=data_cfg.value_col,
        sd_col=data_cfg.get("sd_col"),
        noise_sd=data_cfg.get("noise_sd"),
    )

    # Everything except the data section is a FashConfig field
    kwargs = OmegaConf.to_container(cfg, resolve=True)
    del kwargs["data"]
    if "hydra" in kwargs:
        del kwargs["hydra"]
    config = fash.FashConfig(**kwargs)

    results = fash.fash(units, config=config)
    log.info("\n%s", results.summary())

    # Save the results in the Hydra output directory
    output_dir = HydraConfig.get().runtime.output_dir
    results.save(os.path.join(output_dir, "fash_results"))
    table_file = os.path.join(output_dir, "discoveries.csv")
    log.info("Saving discovery table to %s", table_file)
    results.discover().to_frame().to_csv(table_file, index=False)


if __name__ == "__main__":
    main()

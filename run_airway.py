import time

import pandas as pd

from deseq_engine import CountModel, DEConfig, Design, run_deseq
from deseq_engine.io import write_results


def load_data():
    print("Loading data/counts.csv...")
    counts_df = pd.read_csv("data/counts.csv", index_col=0)
    print("Loading data/coldata.csv...")
    coldata_df = pd.read_csv("data/coldata.csv", index_col=0)
    return counts_df, coldata_df


def main():
    counts_df, coldata_df = load_data()

    # Use the column 'dex' which contains 'untrt' vs 'trt'
    design = Design.from_coldata(coldata_df, "dex", reference="untrt")
    model = CountModel.from_dataframe(counts_df, design)

    print(f"Running DESeq2 (CR-APL) on {counts_df.shape[0]} genes...")
    start_time = time.time()

    analysis = run_deseq(model, DEConfig(n_jobs=-1, shrink_lfc=True))

    end_time = time.time()
    print(f"Done in {end_time - start_time:.1f} seconds.")

    print("Saving results to data/results_python.csv...")
    write_results(analysis.results, "data/results_python.csv")

    print("Saving VST matrix and PCA coordinates...")
    write_results(analysis.transform(), "data/vst_python.csv")
    write_results(analysis.pca().coordinates, "data/pca_python.csv")


if __name__ == "__main__":
    main()
